"""hostprep: idempotent provisioning scripts for Linux hosts.

The library modules (patcher, fileops, mutator, probes, services) implement
detect, back up, write, validate, roll back and restart once; the drivers in
``hostprep.scripts`` combine them for BBR, sshd, UFW, shell aliases and the
Docker monitoring agents.
"""

from hostprep.constants import VERSION

__version__ = VERSION
