"""Segment services."""

from .registry import CONTACT_FIELDS, FieldDescriptor, FieldRegistry, Operator, ValueType
from .conditions import Condition, ConditionGroup, LogicalOperator
from .validator import ConditionValidator
from .compiler import Predicate, PredicateCompiler
from .evaluator import MembershipEvaluator, MembershipPage
from .preview import PreviewService
from .store import SegmentStore

__all__ = [
    "CONTACT_FIELDS",
    "FieldDescriptor",
    "FieldRegistry",
    "Operator",
    "ValueType",
    "Condition",
    "ConditionGroup",
    "LogicalOperator",
    "ConditionValidator",
    "Predicate",
    "PredicateCompiler",
    "MembershipEvaluator",
    "MembershipPage",
    "PreviewService",
    "SegmentStore",
]
