"""Guard conditions for workflow steps.

Conditions are data, evaluated against state without executing code:

    {"field": "vessel_names", "exists": true}
    {"field": "query_type", "in": ["bunker_planning", "vessel_selection"]}
    {"not": {"field": "origin_port", "missing": true}}
    {"all": [{...}, {...}]}

Field names accept dotted paths into nested mappings.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
    model_validator,
)

_MISSING = object()


def resolve_path(state: Dict[str, Any], path: str) -> Any:
    """Read a dotted path from nested mappings, returning a sentinel when absent."""
    current: Any = state
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _present(value: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if isinstance(value, (str, list, dict, tuple, set)) and len(value) == 0:
        return False
    return True


class Condition(BaseModel):
    """A guard predicate over state."""

    field: Optional[str] = None
    exists: Optional[bool] = None
    missing: Optional[bool] = None
    equals: Any = None
    not_equals: Any = None
    in_: Optional[List[Any]] = Field(default=None, alias="in")
    min_length: Optional[int] = None
    all: Optional[List["Condition"]] = None
    any: Optional[List["Condition"]] = None
    not_: Optional["Condition"] = Field(default=None, alias="not")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check_shape(self) -> "Condition":
        combinators = [c for c in (self.all, self.any, self.not_) if c is not None]
        if combinators:
            if len(combinators) > 1 or self.field is not None:
                raise ValueError("a combinator condition cannot carry other clauses")
            return self
        if self.field is None:
            raise ValueError("condition needs a field or a combinator")
        return self

    def evaluate(self, state: Dict[str, Any]) -> bool:
        """Evaluate the condition against state."""
        if self.all is not None:
            return all(c.evaluate(state) for c in self.all)
        if self.any is not None:
            return any(c.evaluate(state) for c in self.any)
        if self.not_ is not None:
            return not self.not_.evaluate(state)

        value = resolve_path(state, self.field)
        fields_set = self.model_fields_set
        result = True
        if self.exists is not None:
            result = result and (_present(value) == self.exists)
        if self.missing is not None:
            result = result and ((not _present(value)) == self.missing)
        if "equals" in fields_set:
            result = result and value is not _MISSING and value == self.equals
        if "not_equals" in fields_set:
            result = result and (value is _MISSING or value != self.not_equals)
        if self.in_ is not None:
            result = result and value is not _MISSING and value in self.in_
        if self.min_length is not None:
            result = result and hasattr(value, "__len__") and len(value) >= self.min_length
        return result


Condition.model_rebuild()


def evaluate_condition(condition: Optional[Condition], state: Dict[str, Any]) -> bool:
    """Evaluate an optional guard; no guard always holds."""
    return True if condition is None else condition.evaluate(state)
