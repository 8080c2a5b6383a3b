"""
Stagehand Fact Gathering

Collect a minimal set of system facts from a connected host. Facts are
exposed to templates and 'when' guards as the ``facts`` variable.
"""

from typing import Any, Dict

DEBIAN_FAMILY = ("ubuntu", "debian", "linuxmint", "pop", "raspbian")
REDHAT_FAMILY = ("redhat", "rhel", "centos", "fedora", "rocky", "almalinux", "alma", "oracle", "amzn")
SUSE_FAMILY = ("suse", "opensuse", "opensuse-leap", "sles")

# fact name -> probe command; a probe that fails leaves its fact unset
SIMPLE_PROBES = (
    ("system", "uname -s"),
    ("kernel", "uname -r"),
    ("architecture", "uname -m"),
    ("hostname", "hostname -s 2>/dev/null || hostname"),
    ("fqdn", "hostname -f 2>/dev/null || hostname"),
)


async def gather_facts(connection) -> Dict[str, Any]:
    """
    Gather facts from a Linux/Unix host.

    Collects:
    - hostname, fqdn: short and fully qualified host names
    - system, kernel, architecture: from uname
    - distribution, distribution_version: from /etc/os-release
    - os_family: Debian, RedHat, Suse, Archlinux, Alpine or Linux
    - pkg_mgr: apt, dnf or yum, when one can be determined
    """
    facts: Dict[str, Any] = {}

    for name, command in SIMPLE_PROBES:
        result = await connection.run(command)
        value = result.stdout.strip()
        if result.rc == 0 and value:
            facts[name] = value

    result = await connection.run("cat /etc/os-release")
    if result.rc == 0:
        facts.update(parse_os_release(result.stdout))

    if "distribution" in facts:
        facts["os_family"] = os_family(facts["distribution"])

    family = facts.get("os_family")
    if family == "Debian":
        facts["pkg_mgr"] = "apt"
    elif family == "RedHat":
        result = await connection.run("command -v dnf")
        facts["pkg_mgr"] = "dnf" if result.rc == 0 else "yum"

    return facts


def parse_os_release(content: str) -> Dict[str, str]:
    """Parse /etc/os-release content."""
    facts = {}
    for line in content.splitlines():
        key, sep, value = line.strip().partition("=")
        if not sep:
            continue
        value = value.strip('"\'')
        if key == "ID" and value:
            facts["distribution"] = value.capitalize()
        elif key == "VERSION_ID" and value:
            facts["distribution_version"] = value
    return facts


def os_family(distribution: str) -> str:
    """Map distribution to OS family."""
    dist_lower = distribution.lower()
    if dist_lower in DEBIAN_FAMILY:
        return "Debian"
    if dist_lower in REDHAT_FAMILY:
        return "RedHat"
    if dist_lower in SUSE_FAMILY:
        return "Suse"
    if dist_lower in ("arch", "manjaro", "endeavouros"):
        return "Archlinux"
    if dist_lower == "alpine":
        return "Alpine"
    return "Linux"
