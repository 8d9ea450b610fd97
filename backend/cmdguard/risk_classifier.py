from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Severity tiers
# ---------------------------------------------------------------------------

SEVERITY_NONE = "none"
SEVERITY_LEVELS: tuple[str, ...] = ("low", "medium", "high", "critical")

_SEVERITY_RANK: dict[str, int] = {SEVERITY_NONE: 0, **{s: i + 1 for i, s in enumerate(SEVERITY_LEVELS)}}


def severity_rank(severity: str) -> int:
    """Position of *severity* in the total order none < low < ... < critical."""
    return _SEVERITY_RANK.get(severity, 0)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DangerousPattern:
    """A named rule flagging a risky command shape."""

    id: str
    predicate: Callable[[str], bool]
    description: str
    severity: str  # "low", "medium", "high", "critical"
    examples: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.severity not in SEVERITY_LEVELS:
            raise ValueError(f"Unknown severity: {self.severity}")

    @classmethod
    def from_regex(
        cls,
        id: str,
        regex: str,
        description: str,
        severity: str,
        examples: tuple[str, ...] = (),
        flags: int = 0,
    ) -> DangerousPattern:
        compiled = re.compile(regex, flags)
        return cls(
            id=id,
            predicate=lambda command: compiled.search(command) is not None,
            description=description,
            severity=severity,
            examples=examples,
        )

    def matches(self, command: str) -> bool:
        return bool(self.predicate(command))


@dataclass
class SecurityVerdict:
    """Classification of one command string."""

    is_dangerous: bool
    severity: str
    matched_patterns: list[DangerousPattern] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    requires_confirmation: bool = False

    @property
    def matched_ids(self) -> list[str]:
        return [p.id for p in self.matched_patterns]


# ---------------------------------------------------------------------------
# Default rules
# ---------------------------------------------------------------------------

# Start of a simple command: beginning of line, or after ; | & ( or backtick.
_CMD = r"(?:^|[;&|(`]\s*|\$\(\s*)"
# Optional privilege prefix so "sudo rm -rf" is still seen as rm.
_PRIV = r"(?:(?:sudo|doas)(?:\s+-\S+)*\s+)?"

DEFAULT_PATTERNS: tuple[DangerousPattern, ...] = (
    DangerousPattern.from_regex(
        "rm-rf",
        r"\brm\s+(?:-\S+\s+)*(?:-[a-zA-Z]*[rR][a-zA-Z]*f[a-zA-Z]*|-[a-zA-Z]*f[a-zA-Z]*[rR][a-zA-Z]*"
        r"|--recursive\s+--force|--force\s+--recursive"
        r"|-[a-zA-Z]*[rR][a-zA-Z]*\s+-[a-zA-Z]*f[a-zA-Z]*|-[a-zA-Z]*f[a-zA-Z]*\s+-[a-zA-Z]*[rR][a-zA-Z]*)(?:\s|$)",
        "Recursive force delete - can permanently delete files and directories",
        "critical",
        ("rm -rf /", "rm -rf *", "rm -fr /home", "rm -Rf /var/www", "rm -r -f build"),
    ),
    DangerousPattern.from_regex(
        "dd",
        r"\bdd\s+(?:\S+\s+)*?(?:if|of)=",
        "Disk duplication - can overwrite entire disks",
        "critical",
        ("dd if=/dev/zero of=/dev/sda", "dd if=/dev/sda of=/dev/sdb"),
    ),
    DangerousPattern.from_regex(
        "block-device-redirect",
        r">\s*/dev/(?:sd[a-z]|hd[a-z]|vd[a-z]|xvd[a-z]|nvme\d+n\d+|mmcblk\d+|disk\d+)",
        "Raw write to a block device - destroys the data on the disk",
        "critical",
        ("echo 0 > /dev/sda", "cat image.iso > /dev/disk2"),
    ),
    DangerousPattern.from_regex(
        "mkfs",
        r"\bmkfs(?:\.[a-z0-9]+)?\s+",
        "Format filesystem - will erase all data on the partition",
        "critical",
        ("mkfs.ext4 /dev/sda1", "mkfs /dev/sdb1"),
    ),
    DangerousPattern.from_regex(
        "format",
        _CMD + r"format\s+[A-Za-z]:",
        "Format disk - will erase all data",
        "critical",
        ("format C:", "format D: /fs:NTFS"),
        re.IGNORECASE,
    ),
    DangerousPattern.from_regex(
        "fdisk",
        r"\b(?:fdisk|sfdisk|cfdisk|gdisk|sgdisk|parted)\s+",
        "Disk partitioning - can destroy partition table",
        "high",
        ("fdisk /dev/sda", "parted /dev/sdb mklabel gpt"),
    ),
    DangerousPattern.from_regex(
        "sudo",
        r"\b(?:sudo|doas|pkexec)\s+",
        "Elevated privileges - command will run with administrator rights",
        "medium",
        ("sudo rm -rf /", "sudo apt-get install"),
    ),
    DangerousPattern.from_regex(
        "chmod-777",
        r"\bchmod\s+(?:-\S+\s+)*(?:0?777|a\+rwx|ugo\+rwx|o\+w)\s+",
        "Set full permissions - security risk",
        "medium",
        ("chmod 777 /var/www", "chmod -R 777 /"),
    ),
    DangerousPattern.from_regex(
        "chown-root",
        r"\bchown\s+(?:-\S+\s+)*root(?::\S*)?\s+",
        "Change ownership to root - can affect system files",
        "high",
        ("chown root /etc/passwd", "chown -R root:root /home"),
    ),
    DangerousPattern.from_regex(
        "kill-all",
        r"\b(?:killall|pkill)\s+|\bkill\s+(?:-\S+\s+)*-1\b",
        "Kill all processes by name - can terminate critical services",
        "medium",
        ("killall nginx", "killall -9 systemd", "kill -9 -1"),
    ),
    DangerousPattern.from_regex(
        "reboot-shutdown",
        _CMD + _PRIV + r"(?:reboot|shutdown|poweroff|halt|init\s+[06])\b"
        r"|\bsystemctl\s+(?:reboot|poweroff|halt)\b",
        "System power control - will restart or shutdown the system",
        "medium",
        ("reboot", "shutdown -h now", "poweroff"),
    ),
    DangerousPattern.from_regex(
        "pipe-to-shell",
        r"\b(?:curl|wget)\b[^|]*\|\s*(?:sudo\s+)?(?:ba|z|k)?sh\b",
        "Download piped into a shell - runs unreviewed remote code",
        "high",
        ("curl -fsSL https://example.com/install.sh | sh", "wget -qO- http://x | sudo bash"),
    ),
)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class RiskClassifier:
    """Evaluates a finished command against the dangerous-pattern registry.

    Every rule is evaluated and every match is reported; the aggregate
    severity is the highest matched tier. Verdicts are built fresh on each
    call and never cached.
    """

    def __init__(self, patterns: tuple[DangerousPattern, ...] | list[DangerousPattern] = DEFAULT_PATTERNS) -> None:
        self._patterns: dict[str, DangerousPattern] = {p.id: p for p in patterns}

    def classify(self, command: str) -> SecurityVerdict:
        matched: list[DangerousPattern] = []
        if command and command.strip():
            for pattern in list(self._patterns.values()):
                if self._safe_match(pattern, command):
                    matched.append(pattern)

        severity = self._aggregate_severity(matched)
        is_dangerous = bool(matched)
        return SecurityVerdict(
            is_dangerous=is_dangerous,
            severity=severity,
            matched_patterns=matched,
            warnings=[p.description for p in matched],
            # The lowest tier is informational only.
            requires_confirmation=is_dangerous and severity != SEVERITY_LEVELS[0],
        )

    # ------------------------------------------------------------------
    # Registry management
    # ------------------------------------------------------------------

    def get_rules(self) -> list[DangerousPattern]:
        return list(self._patterns.values())

    def add_rule(self, rule: DangerousPattern) -> None:
        """Insert *rule*, replacing any existing rule with the same id."""
        self._patterns[rule.id] = rule

    def remove_rule(self, rule_id: str) -> None:
        self._patterns.pop(rule_id, None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _aggregate_severity(matched: list[DangerousPattern]) -> str:
        if not matched:
            return SEVERITY_NONE
        return max((p.severity for p in matched), key=severity_rank)

    @staticmethod
    def _safe_match(pattern: DangerousPattern, command: str) -> bool:
        # A failing predicate counts as a match.
        try:
            return pattern.matches(command)
        except Exception:
            logger.exception("Rule %s raised while classifying; treating as a match", pattern.id)
            return True
