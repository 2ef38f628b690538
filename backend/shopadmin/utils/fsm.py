"""Finite state machine helper for status lifecycles.

Usage:
    from shopadmin.utils.fsm import TransitionValidator
    ORDER_FSM = TransitionValidator({
        'pending': {'confirmed', 'cancelled'},
        'confirmed': {'shipped', 'cancelled'},
        'shipped': {'delivered'},
    })
    ORDER_FSM.assert_can_transition(order.status, 'shipped')

Raises ValidationError (400) on a disallowed move.
"""
from __future__ import annotations
from typing import Dict, Set

from shopadmin.errors import ValidationError


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            raise ValidationError(f"Invalid {self.field_name} transition {current} -> {target}")
        return True

    def is_terminal(self, status: str) -> bool:
        return not self.graph.get(status)

__all__ = ['TransitionValidator']
