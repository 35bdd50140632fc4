"""
Sibling Ordering Tests
======================

Tests for the pure ordering and folder-tree helpers.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

from services.persistence.ordering import (
    build_folder_path,
    changed_ranks,
    collect_descendants,
    dense_ranks,
    next_sort_order,
    sort_records,
    validate_folder_hierarchy,
)


def _row(row_id, sort_order, parent_id=None, created_at='2025-01-01T00:00:00.000000'):
    return {'id': row_id, 'sort_order': sort_order, 'parent_id': parent_id,
            'created_at': created_at, 'name': row_id.upper()}


class TestSortOrders:
    """Test next order and dense re-ranking."""

    def test_next_sort_order_empty_scope(self):
        assert next_sort_order([]) == 0

    def test_next_sort_order_uses_max(self):
        assert next_sort_order([_row('a', 0), _row('b', 7), _row('c', 2)]) == 8

    def test_dense_ranks_closes_gaps(self):
        ranks = dense_ranks([_row('a', 0), _row('b', 4), _row('c', 9)])
        assert ranks == {'a': 0, 'b': 1, 'c': 2}

    def test_requested_order_wins_ties(self):
        """Moving c to position 0 pushes the current holder down."""
        ranks = dense_ranks([_row('a', 0), _row('b', 1), _row('c', 2)], {'c': 0})
        assert ranks == {'c': 0, 'a': 1, 'b': 2}

    def test_ties_without_request_are_stable(self):
        rows = [
            _row('b', 0, created_at='2025-01-02T00:00:00.000000'),
            _row('a', 0, created_at='2025-01-01T00:00:00.000000'),
        ]
        assert dense_ranks(rows) == {'a': 0, 'b': 1}

    def test_changed_ranks_only_reports_moves(self):
        changes = changed_ranks([_row('a', 0), _row('b', 1), _row('c', 5)])
        assert changes == {'c': 2}

    def test_sort_records(self):
        rows = sort_records([_row('b', 1), _row('a', 0)])
        assert [row['id'] for row in rows] == ['a', 'b']


class TestFolderTree:
    """Test descendant collection, cycle validation and paths."""

    def setup_method(self):
        # root -> a -> b -> c ; root -> d
        self.folders = [
            _row('a', 0), _row('b', 0, 'a'), _row('c', 0, 'b'), _row('d', 1),
        ]

    def test_collect_descendants(self):
        assert collect_descendants(self.folders, 'a') == {'b', 'c'}
        assert collect_descendants(self.folders, 'd') == set()

    def test_collect_descendants_survives_cycles(self):
        folders = [_row('x', 0, 'y'), _row('y', 0, 'x')]
        assert collect_descendants(folders, 'x') == {'y'}

    def test_move_to_root_always_valid(self):
        assert validate_folder_hierarchy(self.folders, 'c', None) is True

    def test_move_under_itself_invalid(self):
        assert validate_folder_hierarchy(self.folders, 'a', 'a') is False

    def test_move_under_descendant_invalid(self):
        assert validate_folder_hierarchy(self.folders, 'a', 'c') is False

    def test_move_under_sibling_valid(self):
        assert validate_folder_hierarchy(self.folders, 'a', 'd') is True

    def test_build_folder_path(self):
        assert build_folder_path(self.folders, 'c') == ['A', 'B', 'C']
        assert build_folder_path(self.folders, 'missing') == []
