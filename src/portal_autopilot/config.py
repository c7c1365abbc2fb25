"""Configuration management for Portal Autopilot."""

from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Login
    login_url: Optional[str] = Field(None, description="Entry (login) URL of the portal")
    login_username: Optional[str] = Field(None, description="Portal username")
    login_password: Optional[str] = Field(None, description="Portal password")
    workplace: Optional[str] = Field(None, description="Work Place option chosen at login")
    desk_number: Optional[str] = Field(None, description="Desk Number entered at login")
    remember_me: Optional[str] = Field(None, description="Remember Me flag (true/false/yes/no)")
    post_login_ready_selector: Optional[str] = Field(None, description="Selector proving login succeeded")
    login_path_pattern: Optional[str] = Field(None, description="Regex matching entry-point paths")

    # Single-job input
    project_url: Optional[str] = Field(None, description="Target record for a single-job run")
    comm_type: Optional[str] = Field(None, description="Communication Type value")
    comm_with_client: Optional[str] = Field(None, description="Communicate With Client values, '|' separated")
    call_type: Optional[str] = Field(None, description="Call Type value")
    comments: Optional[str] = Field(None, description="Comments text")
    jobs_file: Optional[str] = Field(None, description="JSON file with the job queue")

    # Selector overrides
    username_selector: str = Field("#username", description="Username control selector")
    password_selector: str = Field("#password", description="Password control selector")
    login_submit_selector: Optional[str] = Field(None, description="Login submit override")
    listing_link_selector: Optional[str] = Field(None, description="Record listing link override")
    listing_link_name: str = Field("Projects", description="Accessible name of the record listing link")
    menu_toggle_selector: Optional[str] = Field(None, description="Collapsed menu toggle override")
    call_log_button_selector: Optional[str] = Field(None, description="Form open button override")
    form_submit_selector: Optional[str] = Field(None, description="Form submit override")
    confirm_selector: Optional[str] = Field(None, description="Selector of the success message")

    # CSRF
    csrf_cookie_names: List[str] = Field(
        ["XSRF-TOKEN", "csrftoken", "csrf_token", "_csrf", "CSRF-TOKEN"],
        description="Cookie names carrying the double-submit token"
    )
    csrf_field_names: List[str] = Field(["_token"], description="Form/body field names for the token")
    csrf_required: bool = Field(False, description="Abort login when no token is found")

    # Timeouts (milliseconds)
    strategy_timeout_ms: int = Field(5000, description="Per-candidate resolution timeout")
    login_field_timeout_ms: int = Field(30000, description="Wait for the login form")
    settle_timeout_ms: int = Field(20000, description="Network settle timeout")
    dialog_timeout_ms: int = Field(10000, description="Wait for the form dialog")
    confirm_timeout_ms: int = Field(15000, description="Wait for confirmation selectors")
    choice_confirm_timeout_ms: int = Field(3000, description="Wait for a choice control to reflect its value")

    # Browser Configuration
    pwdebug: Optional[str] = Field(None, description="Run headed when set")
    browser_headless: bool = Field(True, description="Run browser in headless mode")
    browser_timeout: int = Field(30, description="Browser operation timeout in seconds")
    artifacts_dir: str = Field("artifacts", description="Directory for diagnostic captures")

    # Application Configuration
    debug: bool = Field(False, description="Enable debug mode")
    log_level: str = Field("INFO", description="Logging level")

    @property
    def headless(self) -> bool:
        return self.browser_headless and not self.pwdebug

    @property
    def remember_me_flag(self) -> Optional[bool]:
        """Interpret REMEMBER_ME; None means leave the checkbox alone."""
        if not self.remember_me:
            return None
        return self.remember_me.strip().lower() in ("true", "yes")

    def require_login(self) -> None:
        """Raise ConfigurationError naming every missing mandatory login value."""
        from portal_autopilot.core.errors import ConfigurationError

        missing = [
            name.upper()
            for name in ("login_url", "login_username", "login_password")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(f"Missing required env: {', '.join(missing)}")


# Global settings instance
settings = Settings()
