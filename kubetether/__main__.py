"""
CLI entry point, when used as a module: `python -m kubetether`.

Useful for debugging in the IDEs (use the start-mode "Module", module "kubetether").
"""
from kubetether import cli

if __name__ == '__main__':
    cli.main()
