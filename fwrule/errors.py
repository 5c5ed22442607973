"""
Custom exception types for rule compilation and firewalld application.
"""

from typing import Optional


class InvalidRuleError(ValueError):
    """
    Raised when a rule definition cannot be compiled, e.g. a malformed port
    or port range. Unparseable network entries never raise; they are
    reported as warnings on the compiled plan instead.
    """
    def __init__(self, rule_name: str, message: str = "Invalid rule definition", detail: Optional[str] = None):
        self.rule_name = rule_name
        self.detail = detail
        full = f"{message} for {rule_name}"
        if detail:
            full = f"{full}: {detail}"
        super().__init__(full)


class FirewallApplyError(Exception):
    """
    Raised when firewall-cmd fails to create or update one of the objects of
    a compiled plan. Objects ordered before the failing one have already been
    written to the permanent configuration; re-applying the same plan is safe.
    """
    def __init__(self, ref: str, message: str = "Failed to apply firewalld object", detail: Optional[str] = None):
        self.ref = ref
        self.detail = detail
        full = f"{message} {ref}"
        if detail:
            full = f"{full}: {detail}"
        super().__init__(full)


__all__ = ["InvalidRuleError", "FirewallApplyError"]
