from __future__ import annotations

from storypath.cli import main

if __name__ == "__main__":
    main()
