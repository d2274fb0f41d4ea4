"""secgate runtime settings (Pydantic v2 Settings).

Centralises every configurable path / flag so that:

* The CLI never hard-codes relative paths.
* Environment overrides work (``SECGATE_REPORTS_DIR``, etc.).
* Tests can inject a custom root via ``Settings(repo_root=tmp_path)``.
* Build context from the pipeline runner (Jenkins ``BUILD_ID`` /
  ``GIT_COMMIT``) is picked up without any wiring in the Jenkinsfile.

Usage
-----
::

    from secgate.core.settings import Settings

    s = Settings()              # auto-detects root from cwd
    s.reports_dir.mkdir(...)    # always correct, regardless of cwd
"""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from secgate.core.paths import find_repo_root


class Settings(BaseSettings):
    """All runtime configuration for secgate.

    *repo_root* anchors every derived path.  If not supplied, it is
    auto-detected via :func:`secgate.core.paths.find_repo_root`.
    """

    model_config = SettingsConfigDict(
        env_prefix="SECGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Root ────────────────────────────────────────────────
    repo_root: Path | None = None

    # ── Derived paths ───────────────────────────────────────
    reports_dir: Path | None = None
    policy_path: Path | None = None
    ledger_path: Path | None = None

    # ── Policy settings ─────────────────────────────────────
    policy_filename: str = "security-policy.yaml"
    policy_max_size_kb: int = 256

    # ── Run limits ──────────────────────────────────────────
    timeout_seconds: float = 300.0
    max_workers: int = 3
    record_ledger: bool = True

    # ── Logging ─────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True  # structured JSON by default

    # ── Report signing ──────────────────────────────────────
    report_key_env: str = "SECGATE_REPORT_KEY"

    # ── Build context (pass-through, never interpreted) ─────
    build_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("build_id", "SECGATE_BUILD_ID", "BUILD_ID"),
    )
    commit: str | None = Field(
        default=None,
        validation_alias=AliasChoices("commit", "SECGATE_COMMIT", "GIT_COMMIT"),
    )
    image_tag: str | None = Field(
        default=None,
        validation_alias=AliasChoices("image_tag", "SECGATE_IMAGE_TAG", "IMAGE_TAG"),
    )

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Fill in any path that was not explicitly overridden."""
        if self.repo_root is None:
            self.repo_root = find_repo_root()

        root = self.repo_root
        if self.reports_dir is None:
            self.reports_dir = root / "reports" / "gate"
        if self.policy_path is None:
            self.policy_path = root / self.policy_filename
        if self.ledger_path is None:
            self.ledger_path = self.reports_dir / "ledger.db"
        return self

    # ── Convenience ─────────────────────────────────────────
    @property
    def policy_max_size_bytes(self) -> int:
        return self.policy_max_size_kb * 1024

    def build_context(self) -> dict[str, str | None]:
        """Pipeline metadata copied verbatim into every report."""
        return {
            "buildId": self.build_id,
            "commit": self.commit,
            "imageTag": self.image_tag,
        }

    def ensure_dirs(self) -> None:
        """Create the reports directory if it doesn't exist."""
        assert self.reports_dir is not None  # guaranteed after validation
        self.reports_dir.mkdir(parents=True, exist_ok=True)
