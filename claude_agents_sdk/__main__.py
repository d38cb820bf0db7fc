"""Allow running the debug CLI with ``python -m claude_agents_sdk``."""

from claude_agents_sdk.cli import main

if __name__ == "__main__":
    main()
