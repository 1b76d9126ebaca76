"""
VisTrace - Visual Traceroute Discovery

Entry point for running as a module:
    python -m vistrace <target>
"""

from .cli import main

if __name__ == '__main__':
    main()
