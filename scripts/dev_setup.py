"""Write a development .env file and initialise the SQLite account database."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from sagaforge import create_app
from sagaforge.extensions import db

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update a .env file with the Flask and text generation settings required "
            "for local development and initialise the SQLite database."
        )
    )
    parser.add_argument(
        "--flask-app",
        default="wsgi.py",
        help="Entry point used by Flask (default: wsgi.py)",
    )
    parser.add_argument(
        "--secret-key",
        required=False,
        help="Secret key for Flask sessions. If omitted, the current value in .env is preserved.",
    )
    parser.add_argument(
        "--provider",
        choices=("openai", "local"),
        help="Text generation backend (GENERATION_PROVIDER).",
    )
    parser.add_argument("--model", help="Model name for the OpenAI backend (GENERATION_MODEL).")
    parser.add_argument("--openai-api-key", help="API key for the OpenAI backend (OPENAI_API_KEY).")
    parser.add_argument(
        "--llm-api-base",
        help="Base URL for an OpenAI-compatible API (optional).",
    )
    parser.add_argument(
        "--local-model-path",
        help="Path to a Hugging Face model for the local backend (TEXT_GENERATOR_MODEL_PATH).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds before a generation request is abandoned (GENERATION_TIMEOUT_SECONDS).",
    )
    parser.add_argument(
        "--database-url",
        help="Override SQLALCHEMY_DATABASE_URI / DATABASE_URL (optional).",
    )
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-db",
        action="store_true",
        help="Only update the .env file without touching the database.",
    )
    return parser.parse_args()


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n")
    print(f"Updated environment variables written to {path}.")


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    optional_updates = {
        "SECRET_KEY": args.secret_key,
        "GENERATION_PROVIDER": args.provider,
        "GENERATION_MODEL": args.model,
        "OPENAI_API_KEY": args.openai_api_key,
        "LLM_API_BASE": args.llm_api_base,
        "TEXT_GENERATOR_MODEL_PATH": args.local_model_path,
        "GENERATION_TIMEOUT_SECONDS": str(args.timeout) if args.timeout else None,
        "DATABASE_URL": args.database_url,
    }

    env_data["FLASK_APP"] = args.flask_app
    env_data.update({key: value for key, value in optional_updates.items() if value})
    write_env(args.env_path, env_data)
    return env_data


def initialize_database() -> None:
    app = create_app()
    with app.app_context():
        db.create_all()
    print("Database initialized (instance/sagaforge.db).")


def _redact(key: str, value: str) -> str:
    if key in {"SECRET_KEY", "OPENAI_API_KEY"} and value:
        return value[:4] + "…"
    return value


def main() -> None:
    args = parse_args()
    env_values = update_env_file(args)

    if not args.skip_db:
        initialize_database()
    else:
        print("Database initialization skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        print(f"  {key}={_redact(key, env_values[key])}")


if __name__ == "__main__":
    main()
