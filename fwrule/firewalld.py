"""
Firewalld applier for fwrule.

This module writes compiled rule plans into firewalld's permanent
configuration through firewall-cmd:
- Rendering rich rule text for compiled rules
- Creating (or reusing) zones, ipsets and custom services
- Adding rich rules in dependency order
- Reloading firewalld once a plan is written
"""

import logging
import subprocess
from typing import Dict, Any, List, Tuple

from .errors import FirewallApplyError
from .plan import AddressSet, PlanObject, RulePlan, RuleSpec, ServiceSpec

# firewall-cmd reports these for objects that already exist; reapplying an
# identical plan must not fail on them.
_ALREADY_PRESENT_CODES = ("ALREADY_ENABLED", "NAME_CONFLICT", "ALREADY_SET")

_ICMP_PROTOCOLS = {"ipv4": "icmp", "ipv6": "ipv6-icmp"}


def render_rich_rules(rule: RuleSpec) -> List[str]:
    """
    Build the firewalld rich rule strings for a compiled rule.

    firewalld accepts a single element per rich rule, so an ICMP block
    list yields one rule per ICMP type. icmp-block carries its own reject
    semantics and must not have an action.
    """
    head = f'rule family="{rule.family}"'
    if rule.source:
        head = f'{head} source ipset="{rule.source}"'

    if rule.protocol == "icmp" and rule.icmp_blocks:
        return [f'{head} icmp-block name="{icmp_type}"' for icmp_type in rule.icmp_blocks]

    if rule.service:
        element = f'service name="{rule.service}"'
    elif rule.protocol == "icmp":
        element = f'protocol value="{_ICMP_PROTOCOLS[rule.family]}"'
    elif rule.protocol == "all":
        element = ""
    else:
        element = f'protocol value="{rule.protocol}"'

    if element:
        return [f"{head} {element} {rule.action}"]
    return [f"{head} {rule.action}"]


def render_plan(plan: RulePlan) -> Dict[str, List[str]]:
    return {rule.name: render_rich_rules(rule) for rule in plan.rich_rules}


class FirewalldApplier:
    """Applies rule plans to firewalld's permanent configuration."""

    def __init__(self, settings: Dict[str, Any]):
        self.settings = settings
        self.firewalld_config = settings.get("firewalld") or {}
        self.firewall_cmd = self.firewalld_config.get("firewall_cmd", "firewall-cmd")
        self.command_timeout = self.firewalld_config.get("command_timeout", 30)
        self.reload = self.firewalld_config.get("reload", True)

        self.logger = logging.getLogger(__name__)
        self._known_zones = None

    def _run_firewall_cmd(self, args: List[str], check: bool = True) -> Tuple[bool, str, str]:
        """
        Run firewall-cmd with given arguments.

        Returns:
            Tuple of (success, stdout, stderr)
        """
        cmd = [self.firewall_cmd] + args
        # Note: DEBUG logging exposes addresses and full rule text in logs.
        self.logger.debug("Executing firewall-cmd: %s", " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
                check=check
            )
            return result.returncode == 0, result.stdout.strip(), result.stderr.strip()
        except subprocess.CalledProcessError as e:
            stdout = e.stdout.strip() if e.stdout else ""
            stderr = e.stderr.strip() if e.stderr else ""
            if not self._is_already_present(stdout, stderr):
                self.logger.error(f"firewall-cmd failed: {stderr}")
            return False, stdout, stderr
        except subprocess.TimeoutExpired:
            self.logger.error("firewall-cmd command timed out")
            return False, "", "Command timed out"
        except OSError as e:
            self.logger.error(f"Unable to run {self.firewall_cmd}: {e}")
            return False, "", str(e)

    @staticmethod
    def _is_already_present(stdout: str, stderr: str) -> bool:
        combined = " ".join(filter(None, [stdout, stderr])).upper()
        return any(code in combined for code in _ALREADY_PRESENT_CODES)

    def _ensure(self, ref: str, args: List[str]):
        """Run a create/add step, accepting objects that already exist."""
        success, stdout, stderr = self._run_firewall_cmd(args)
        if self._is_already_present(stdout, stderr):
            self.logger.debug(f"{ref} already present: {stderr or stdout}")
            return
        if not success:
            raise FirewallApplyError(ref, detail=stderr or stdout)

    def is_firewalld_available(self) -> bool:
        """Check if firewalld is available and running."""
        success, stdout, stderr = self._run_firewall_cmd(["--state"], check=False)
        if success and "running" in stdout:
            return True

        self.logger.warning(f"Firewalld not available: {stderr or stdout}")
        return False

    def ensure_zone(self, zone: str):
        """Create the permanent zone unless firewalld already knows it."""
        if self._known_zones is None:
            success, stdout, stderr = self._run_firewall_cmd(["--permanent", "--get-zones"], check=False)
            if not success:
                raise FirewallApplyError(f"zone:{zone}", "Failed to list zones before creating", stderr)
            self._known_zones = set(stdout.split())

        if zone in self._known_zones:
            return
        self._ensure(f"zone:{zone}", ["--permanent", f"--new-zone={zone}"])
        self._known_zones.add(zone)
        self.logger.info(f"Created firewalld zone: {zone}")

    def ensure_ipset(self, address_set: AddressSet):
        self._ensure(address_set.ref, [
            "--permanent", f"--new-ipset={address_set.name}",
            f"--type={address_set.ipset_type}", f"--option=family={address_set.ipset_family}",
        ])
        for member in address_set.members:
            self._ensure(address_set.ref, [
                "--permanent", f"--ipset={address_set.name}", f"--add-entry={member}"
            ])
        self.logger.info(
            f"Ensured ipset {address_set.name} ({address_set.ipset_type}, {len(address_set.members)} entries)"
        )

    def ensure_service(self, service: ServiceSpec):
        self._ensure(service.ref, ["--permanent", f"--new-service={service.name}"])
        if service.description:
            self._ensure(service.ref, [
                "--permanent", f"--service={service.name}", f"--set-description={service.description}"
            ])
        for port in service.ports:
            self._ensure(service.ref, [
                "--permanent", f"--service={service.name}", f"--add-port={port}"
            ])
        if service.zone:
            self.ensure_zone(service.zone)
            self._ensure(service.ref, [
                "--permanent", f"--zone={service.zone}", f"--add-service={service.name}"
            ])
            self.logger.info(f"Added service {service.name} to zone {service.zone}")
        self.logger.info(f"Ensured service {service.name}: {', '.join(str(p) for p in service.ports)}")

    def ensure_rich_rule(self, rule: RuleSpec):
        self.ensure_zone(rule.zone)
        for rich_rule in render_rich_rules(rule):
            self._ensure(rule.ref, [
                "--permanent", f"--zone={rule.zone}", f"--add-rich-rule={rich_rule}"
            ])
        self.logger.info(f"Ensured rich rule {rule.name} in zone {rule.zone}")

    def _apply_object(self, obj: PlanObject):
        if isinstance(obj, ServiceSpec):
            self.ensure_service(obj)
        elif isinstance(obj, AddressSet):
            self.ensure_ipset(obj)
        elif isinstance(obj, RuleSpec):
            self.ensure_rich_rule(obj)
        else:
            raise TypeError(f"Unsupported plan object: {obj!r}")

    def apply_plan(self, plan: RulePlan) -> List[str]:
        """
        Write every object of the plan, dependencies first, then reload.

        Returns:
            The references of the applied objects, in apply order

        Raises:
            FirewallApplyError: If a firewall-cmd step fails
        """
        applied = []
        for obj in plan.ordered():
            self._apply_object(obj)
            applied.append(obj.ref)

        if applied and self.reload:
            success, _, stderr = self._run_firewall_cmd(["--reload"])
            if not success:
                raise FirewallApplyError(f"plan:{plan.rule}", "Failed to reload firewalld after applying", stderr)

        self.logger.info(f"Applied {len(applied)} firewalld objects for rule '{plan.rule}'")
        return applied
