from __future__ import annotations

from formulai.main import run


if __name__ == "__main__":
  run()
