#!/usr/bin/env python3
"""Cross-platform install script for transcript-engine.

Usage:
    python install.py          # Install into .venv
    python install.py --dev    # Editable install with test tools
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required. "
            f"You have {sys.version_info.major}.{sys.version_info.minor}."
        )

    print(f"Python {sys.version_info.major}.{sys.version_info.minor} detected. OK.")

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir = os.path.join(project_dir, ".venv")
    is_windows = platform.system() == "Windows"

    bin_dir = "Scripts" if is_windows else "bin"
    pip = os.path.join(venv_dir, bin_dir, "pip")

    if not os.path.isdir(venv_dir):
        print("Creating virtual environment...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])
    else:
        print("Virtual environment already exists.")

    print("Upgrading pip...")
    subprocess.check_call([pip, "install", "--upgrade", "pip"])

    if dev:
        print("Installing transcript-engine in development mode...")
        subprocess.check_call([pip, "install", "-e", ".[dev]"], cwd=project_dir)
    else:
        print("Installing transcript-engine...")
        subprocess.check_call([pip, "install", "."], cwd=project_dir)

    # Config files are optional; defaults apply without them
    for src, dst in [("config.example.yaml", "config.yaml"), (".env.example", ".env")]:
        src_path = os.path.join(project_dir, src)
        dst_path = os.path.join(project_dir, dst)
        if not os.path.exists(dst_path) and os.path.exists(src_path):
            shutil.copy(src_path, dst_path)
            print(f"Created {dst} from {src}")
        elif os.path.exists(dst_path):
            print(f"{dst} already exists, skipping.")

    activate_cmd = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"

    print()
    print("=" * 50)
    print("  transcript-engine installation complete!")
    print("=" * 50)
    print()
    print("Next steps:")
    print(f"  1. Activate the virtual environment:")
    print(f"       {activate_cmd}")
    print(f"  2. Check the configuration:")
    print(f"       python -m transcript_engine config-check")
    print(f"  3. Resolve or export a conversation dump:")
    print(f"       python -m transcript_engine resolve dump.json")
    print(f"       python -m transcript_engine export dump.json -f markdown -o .")
    if dev:
        print(f"  4. Run the tests:")
        print(f"       pytest")
    print()


if __name__ == "__main__":
    main()
