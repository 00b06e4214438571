"""
Exceptions raised by the automation subsystem.

Validation errors only come out of the rule store at create/update time.
``ActionFailed`` and ``CascadeLimitExceeded`` are raised and caught inside
the dispatch engine; neither escapes to the code that emitted the event.
"""

from __future__ import annotations

from typing import Optional


class AutomationError(Exception):
    """Base class for automation errors."""


class ValidationError(AutomationError, ValueError):
    """A rule definition is malformed."""


class InvalidTrigger(ValidationError):
    pass


class InvalidAction(ValidationError):
    pass


class NotFound(AutomationError, LookupError):
    def __init__(self, kind: str, ident: object) -> None:
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class ActionFailed(AutomationError):
    def __init__(self, rule_id: Optional[int], action_type: str, cause: BaseException | str) -> None:
        self.rule_id = rule_id
        self.action_type = action_type
        self.cause = cause
        super().__init__(f"Action {action_type} failed for rule_id={rule_id}: {cause}")


class CascadeLimitExceeded(AutomationError):
    def __init__(self, depth: int, max_depth: int, chain_id: str) -> None:
        self.depth = depth
        self.max_depth = max_depth
        self.chain_id = chain_id
        super().__init__(f"Cascade depth {depth} reached limit {max_depth} (chain={chain_id})")
