import pytest

from veil.proxy.config import ProxyConfig


class TestFromEnv:
    def test_defaults(self):
        config = ProxyConfig.from_env({})

        assert config.target_url == ""
        assert not config.is_configured
        assert config.allowed_paths == ("/3co", "/3co/tarjetavirtual")
        assert "/favicon.ico" in config.static_prefixes
        assert config.api_prefixes == ()
        assert config.domain_allowlist == ()
        assert config.inject_enabled is True
        assert config.mobile_exclusion_enabled is True
        assert config.caller_domain_header == "user_domain"
        assert config.caller_ip_header == "user_ip"
        assert config.upstream_timeout == 30.0

    def test_target_and_lists(self):
        config = ProxyConfig.from_env(
            {
                "TARGET_URL": "https://origin.example/",
                "ALLOWED_PATHS": "/app, /portal ,",
                "API_PREFIXES": "/api",
                "DOMAIN_ALLOWLIST": "cdn.example.com,proxy.example.net",
                "PROXY_TIMEOUT": "5",
            }
        )

        assert config.target_url == "https://origin.example"
        assert config.origin_host == "origin.example"
        assert config.is_configured
        assert config.allowed_paths == ("/app", "/portal")
        assert config.api_prefixes == ("/api",)
        assert config.domain_allowlist == ("cdn.example.com", "proxy.example.net")
        assert config.upstream_timeout == 5.0

    @pytest.mark.parametrize("value", ["off", "0", "false", "OFF", "False"])
    def test_anti_inspect_disabled(self, value):
        assert ProxyConfig.from_env({"ANTI_INSPECT": value}).inject_enabled is False

    @pytest.mark.parametrize("value", ["", "on", "1", "true", "yes"])
    def test_anti_inspect_enabled(self, value):
        assert ProxyConfig.from_env({"ANTI_INSPECT": value}).inject_enabled is True

    def test_payload_file_wins(self, tmp_path):
        payload_file = tmp_path / "payload.html"
        payload_file.write_text("<script>fromfile()</script>", encoding="utf-8")

        config = ProxyConfig.from_env(
            {"INJECT_PAYLOAD": "<script>inline()</script>", "INJECT_PAYLOAD_FILE": str(payload_file)}
        )

        assert config.inject_payload == "<script>fromfile()</script>"

    def test_missing_payload_file_fails_startup(self, tmp_path):
        with pytest.raises(OSError):
            ProxyConfig.from_env({"INJECT_PAYLOAD_FILE": str(tmp_path / "missing")})


class TestMobileDetection:
    def test_default_pattern(self):
        config = ProxyConfig()
        assert config.is_mobile("Mozilla/5.0 (Linux; Android 14)")
        assert config.is_mobile("Opera Mini/36.2")
        assert not config.is_mobile("Mozilla/5.0 (Windows NT 10.0; Win64; x64)")
        assert not config.is_mobile(None)

    def test_custom_pattern(self):
        config = ProxyConfig.from_env({"MOBILE_UA_PATTERN": "kiosk"})
        assert config.is_mobile("Acme KIOSK browser")
        assert not config.is_mobile("Mozilla/5.0 (iPhone)")

    def test_config_is_frozen(self):
        config = ProxyConfig()
        with pytest.raises(AttributeError):
            config.target_url = "https://other.example"
