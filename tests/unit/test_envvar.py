"""Tests for registry environment variables."""

from __future__ import annotations

import yaml

from image_registry_operator.envvar import EnvVar, EnvVars, encode_value


class TestEncodeValue:
    """Test YAML scalar encoding."""

    def test_numeric_string_is_quoted(self):
        """Test that the string "10" survives a YAML round trip as a string."""
        encoded = encode_value("10")
        assert encoded == "'10'"
        assert yaml.safe_load(encoded) == "10"

    def test_scalars(self):
        """Test booleans, integers and plain strings."""
        assert encode_value(True) == "true"
        assert encode_value(False) == "false"
        assert encode_value(10) == "10"
        assert encode_value("filesystem") == "filesystem"

    def test_round_trip_preserves_types(self):
        """Test that decoded values equal the originals."""
        for value in ("10", 10, True, "true", "", "us-east-1", "/registry"):
            assert yaml.safe_load(encode_value(value)) == value


class TestEnvVars:
    """Test EnvVars rendering."""

    def test_build_inline_and_secret(self):
        """Test that secret variables reference the private configuration."""
        envs = EnvVars([
            EnvVar("REGISTRY_STORAGE", "s3"),
            EnvVar("REGISTRY_STORAGE_S3_ACCESSKEY", "AKIA", secret=True),
        ])

        built = envs.build("image-registry-private-configuration")

        assert built[0] == {"name": "REGISTRY_STORAGE", "value": "s3"}
        assert built[1] == {
            "name": "REGISTRY_STORAGE_S3_ACCESSKEY",
            "valueFrom": {
                "secretKeyRef": {
                    "name": "image-registry-private-configuration",
                    "key": "REGISTRY_STORAGE_S3_ACCESSKEY",
                },
            },
        }

    def test_secret_data(self):
        """Test that only secret variables are returned as secret data."""
        envs = EnvVars([EnvVar("A", "1"), EnvVar("B", "2", secret=True)])
        assert envs.secret_data() == {"B": "'2'"}

    def test_order_preserved(self):
        """Test that extend keeps insertion order."""
        envs = EnvVars([EnvVar("A", 1)])
        envs.extend(EnvVars([EnvVar("B", 2), EnvVar("C", 3)]))
        envs.append(EnvVar("D", 4))

        assert [v.name for v in envs] == ["A", "B", "C", "D"]
        assert len(envs) == 4
        assert envs.get("C") == EnvVar("C", 3)
        assert envs.get("Z") is None
