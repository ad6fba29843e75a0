"""
Regenerate .env-template from the local .env.

Keys, comments and blank lines are kept; every value is replaced with a
placeholder so the template can be committed without secrets.
"""

from pathlib import Path

PLACEHOLDER = "<YOUR_VALUE_HERE>"

env_path = Path(".") / ".env"
template_path = Path(".") / ".env-template"


def template_line(line: str) -> str:
    stripped = line.strip()

    # Comments and blank lines pass through
    if not stripped or stripped.startswith("#"):
        return line

    prefix = ""
    if stripped.startswith("export "):
        prefix, stripped = "export ", stripped[len("export "):]

    if "=" not in stripped:
        return line

    key, _, value = stripped.partition("=")
    inline_comment = ""
    if "#" in value:
        inline_comment = " #" + value.partition("#")[2].rstrip()
    return f"{prefix}{key.strip()}={PLACEHOLDER}{inline_comment}\n"


def sync_env_template() -> None:
    lines = env_path.read_text(encoding="utf-8").splitlines(keepends=True)
    template_path.write_text("".join(template_line(line) for line in lines), encoding="utf-8")
    print(f"✓ Wrote {template_path} ({len(lines)} lines)")


if __name__ == "__main__":
    sync_env_template()
