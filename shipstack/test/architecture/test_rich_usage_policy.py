from __future__ import annotations

from ._gate import require_arch_checks_enabled
from ._utils import find_offenders, package_root


def test_direct_rich_imports_are_limited_to_console_module() -> None:
    require_arch_checks_enabled()

    allowlist = {"output/console.py"}
    offenders = [
        line
        for line in find_offenders(package_root(), ("rich",))
        if line.split(":", 1)[0] not in allowlist
    ]

    assert not offenders, "Direct rich usage policy violations:\n" + "\n".join(offenders)
