"""patchpilot identity constants."""

__version__ = "0.1.0"
__codename__ = "PATCHPILOT"
__tagline__ = "Describe it. Diff it. Ship it."

BANNER = r"""
  ___  _ _____ ___ _  _ ___ ___ _    ___ _____
 | _ \/_\_   _/ __| || | _ \_ _| |  / _ \_   _|
 |  _/ _ \| || (__| __ |  _/| || |_| (_) || |
 |_|/_/ \_\_| \___|_||_|_| |___|____\___/ |_|
"""
