"""auto-onboard: finalize a bootstrapped host for Ansible management."""

__version__ = "0.3.0"
