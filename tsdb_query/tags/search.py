"""
Tag conditions and the chain evaluator used to match RRD files.

Conditions are evaluated strictly left to right: the first condition
seeds the result and each following condition is combined with it using
its own connective. 'A AND B OR C' is therefore '(A AND B) OR C', and
'A OR B AND C' is '(A OR B) AND C'.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from ..exceptions import TagResolutionError
from .files import coerce_tag_value, sanitize_tag_value

SUPPORTED_OPERATORS = ('=', '==', '!=', '<>', 'IN', 'NOT IN', 'REGEX', 'BETWEEN')

_DELIMITED_PATTERN = re.compile(r'^/(.*)/([imsx]*)$', re.DOTALL)
_FLAG_MAP = {'i': re.IGNORECASE, 'm': re.MULTILINE, 's': re.DOTALL, 'x': re.VERBOSE}


def compile_pattern(pattern: str) -> 're.Pattern[str]':
    """Compile a bare pattern or a '/pattern/flags' literal."""
    match = _DELIMITED_PATTERN.match(pattern)
    if not match:
        return re.compile(pattern)
    flags = 0
    for letter in match.group(2):
        flags |= _FLAG_MAP[letter]
    return re.compile(match.group(1), flags)


@dataclass
class TagCondition:
    """A predicate on one tag.

    Attributes:
        tag: Tag name
        operator: One of =, ==, !=, <>, IN, NOT IN, REGEX, BETWEEN
        value: Scalar, or a sequence for IN, NOT IN and BETWEEN
        connective: AND or OR, joining this condition to the previous result
    """
    tag: str
    operator: str
    value: Any
    connective: str = 'AND'

    def __post_init__(self):
        self.operator = ' '.join(str(self.operator).split()).upper()
        self.connective = str(self.connective).upper()

    def matches(self, tag_value: Any) -> bool:
        """Test a tag value against this condition.

        Args:
            tag_value: The decoded tag value

        Returns:
            True when the value satisfies the condition

        Raises:
            TagResolutionError: If the operator is not supported
        """
        op = self.operator
        if op in ('=', '=='):
            return sanitize_tag_value(tag_value) == sanitize_tag_value(self.value)
        elif op in ('!=', '<>'):
            return sanitize_tag_value(tag_value) != sanitize_tag_value(self.value)
        elif op == 'IN':
            return sanitize_tag_value(tag_value) in self._sanitized_values()
        elif op == 'NOT IN':
            return sanitize_tag_value(tag_value) not in self._sanitized_values()
        elif op == 'REGEX':
            return compile_pattern(str(self.value)).search(coerce_tag_value(tag_value)) is not None
        elif op == 'BETWEEN':
            return self._between(tag_value)
        raise TagResolutionError(f"Operator {self.operator} not supported")

    def _sequence(self) -> List[Any]:
        if isinstance(self.value, (list, tuple, set)):
            return list(self.value)
        return [self.value]

    def _sanitized_values(self) -> List[str]:
        return [sanitize_tag_value(v) for v in self._sequence()]

    def _between(self, tag_value: Any) -> bool:
        bounds = self._sequence()
        if len(bounds) != 2:
            raise TagResolutionError(f"BETWEEN on tag '{self.tag}' requires two values")
        try:
            number = float(coerce_tag_value(tag_value))
            low, high = float(bounds[0]), float(bounds[1])
        except (TypeError, ValueError):
            return False
        return low <= number <= high


class TagSearch:
    """Evaluates TagCondition chains against decoded tag sets."""

    @staticmethod
    def evaluate(tags: Dict[str, Any], condition: TagCondition) -> bool:
        """Evaluate one condition; a missing tag never matches."""
        if condition.tag not in tags:
            # Unsupported operators still raise
            if condition.operator not in SUPPORTED_OPERATORS:
                raise TagResolutionError(f"Operator {condition.operator} not supported")
            return False
        return condition.matches(tags[condition.tag])

    @classmethod
    def search(cls, tags: Dict[str, Any], conditions: Sequence[TagCondition]) -> bool:
        """Evaluate a condition chain left to right.

        Every condition is evaluated, so an unsupported operator is reported
        even when the result is already decided.

        Args:
            tags: Decoded tag values
            conditions: Ordered conditions

        Returns:
            Result of the chain (True for an empty chain)
        """
        result = None
        for condition in conditions:
            matched = cls.evaluate(tags, condition)
            if result is None:
                result = matched
            elif condition.connective == 'OR':
                result = result or matched
            else:
                result = result and matched
        return True if result is None else result

    @classmethod
    def grouped_search(cls, tags: Dict[str, Any], groups: Sequence['TagConditionGroup']) -> bool:
        """Evaluate condition groups left to right.

        Each group's chain is evaluated, then the results are combined in
        order: a group joins the running result with its own operator. The
        first group's operator is ignored.

        Args:
            tags: Decoded tag values
            groups: Ordered groups; a plain sequence of conditions is an AND group

        Returns:
            Combined result (True when there are no groups)
        """
        result = None
        for group in groups:
            if not isinstance(group, TagConditionGroup):
                group = TagConditionGroup(list(group))
            matched = cls.search(tags, group.conditions)
            if result is None:
                result = matched
            elif group.operator == 'OR':
                result = result or matched
            else:
                result = result and matched
        return True if result is None else result


@dataclass
class TagConditionGroup:
    """A parenthesised condition chain.

    Attributes:
        conditions: Conditions evaluated as one chain
        operator: AND or OR, joining this group to the previous groups
    """
    conditions: List[TagCondition] = field(default_factory=list)
    operator: str = 'AND'

    def __post_init__(self):
        self.operator = str(self.operator).upper()
        if self.operator not in ('AND', 'OR'):
            raise TagResolutionError(f"Invalid group operator: {self.operator}")
