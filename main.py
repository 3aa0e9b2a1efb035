"""VoiceForge - dev launcher. Starts the API server, or the MCP server with --mcp."""

import argparse
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="VoiceForge dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Clean and create the demo user before starting")
    parser.add_argument("--mcp", action="store_true",
                        help="Run the MCP tool server on stdio instead of the HTTP API")
    args = parser.parse_args()

    env = os.environ.copy()
    if args.data_dir:
        env["VOICEFORGE_DATA_DIR"] = str(args.data_dir.resolve())

    if args.demo:
        from backend.demo import create_demo_data
        from voiceforge.config import get_config
        from voiceforge.services import build_services

        create_demo_data(build_services(get_config(args.data_dir)))
        print("Demo user 'demo' created.")

    if args.mcp:
        cmd = [sys.executable, "-m", "backend.mcp_server"]
    else:
        print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
        cmd = ["uv", "run", "uvicorn", "backend.app:app", "--reload", "--host", HOST, "--port", BACKEND_PORT]

    proc = subprocess.Popen(cmd, cwd=ROOT, env=env)
    try:
        proc.wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
        proc.terminate()
        proc.wait()


if __name__ == "__main__":
    main()
