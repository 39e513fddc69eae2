import pytest

from soci_builder.errors import MalformedReferenceError
from soci_builder.validation import compute_sha256, parse_image_reference, validate_digest

DIGEST = "sha256:" + "a" * 64


def test_compute_sha256():
    assert compute_sha256(b"hello") == (
        "sha256:2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
    )


@pytest.mark.parametrize(
    "uri, host, repository",
    [
        (f"registry.example.com/repo@{DIGEST}", "registry.example.com", "repo"),
        (f"registry.example.com/repo:{DIGEST}", "registry.example.com", "repo"),
        (f"123456789012.dkr.ecr.us-west-2.amazonaws.com/team/app@{DIGEST}",
         "123456789012.dkr.ecr.us-west-2.amazonaws.com", "team/app"),
        (f"localhost:5000/team/app@{DIGEST}", "localhost:5000", "team/app"),
        (f"registry.example.com:8443/a/b/c:{DIGEST}", "registry.example.com:8443", "a/b/c"),
        (f"registry.example.com/app:v1.2@{DIGEST}", "registry.example.com", "app"),
    ],
)
def test_parse_image_reference(uri, host, repository):
    reference = parse_image_reference(uri)

    assert reference.registry_host == host
    assert reference.repository == repository
    assert reference.digest == DIGEST
    assert reference.name == f"{repository}@{DIGEST}"


def test_reference_is_immutable():
    reference = parse_image_reference(f"registry.example.com/repo@{DIGEST}")
    with pytest.raises(AttributeError):
        reference.digest = "sha256:" + "b" * 64


@pytest.mark.parametrize(
    "uri",
    [
        "",
        f"repo@{DIGEST}",
        "registry.example.com/repo",
        "registry.example.com/repo:latest",
        "localhost:5000/repo",
        "registry.example.com/repo@sha256:ABC",
        "registry.example.com/repo@sha256:abc",
        "registry.example.com/repo@md5:" + "a" * 32,
        f"registry.example.com/Repo@{DIGEST}",
    ],
)
def test_parse_image_reference_rejects(uri):
    with pytest.raises(MalformedReferenceError):
        parse_image_reference(uri)


def test_validate_digest_accepts_sha512():
    validate_digest("sha512:" + "0" * 128)


def test_validate_digest_rejects_wrong_length():
    with pytest.raises(MalformedReferenceError):
        validate_digest("sha256:" + "0" * 63)
