from creation_rights.infra import paths


def test_user_key_is_lowercase_and_sanitized() -> None:
    assert paths.sanitize_user_key("Bob.Smith+art@Example.com") == "bob_smith_art_example_com"
    assert paths.sanitize_user_key("") == ""


def test_paths_are_deterministic_for_the_same_key() -> None:
    assert paths.license_record("alice", "CR-1", "pi_123") == paths.license_record("alice", "CR-1", "pi_123")
    assert paths.license_record("alice", "CR-1", "pi_123") == "users/alice/creations/licenses/CR-1/pi_123.json"


def test_layout_matches_the_bucket_conventions() -> None:
    assert paths.profile_info("alice@example.com") == "users/alice_example_com/profile/info.json"
    assert paths.folders_index("alice") == "folders/alice.json"
    assert paths.creations_collection("alice") == "users/alice/creations/metadata/all.json"
    assert paths.creation_mirror("alice", "CR-1") == "users/alice/creations/assets/CR-1/metadata.json"
    assert paths.asset_object("alice", "CR-1") == "Creations/alice/CR-1/file"
    assert paths.asset_sidecar("alice", "CR-1") == "Creations/alice/CR-1/upload-metadata.json"
    assert paths.purchaser_license("bob@example.com", "pi_123") == "users/bob_example_com/licenses/pi_123.json"


def test_folder_prefixes_end_with_a_separator() -> None:
    assert paths.asset_folder("alice", "CR-1").endswith("/")
    assert not paths.asset_object("alice", "CR-10").startswith(paths.asset_folder("alice", "CR-1"))
    assert paths.creation_licenses_folder("alice", "CR-1").endswith("/")


def test_segments_cannot_escape_their_folder() -> None:
    p = paths.license_record("alice", "../../etc", "a/b")
    assert ".." not in p.split("/")
    assert p.startswith("users/alice/creations/licenses/")


def test_scaffold_is_placeholders_only() -> None:
    scaffold = paths.user_scaffold("alice")
    assert len(scaffold) == 4
    assert all(paths.is_placeholder(p) for p in scaffold)


def test_public_routes_for_served_objects() -> None:
    assert paths.public_route(paths.asset_object("alice", "CR-1")) == "/api/users/alice/uploads/CR-1/download"
    assert paths.public_route(paths.asset_thumbnail("alice", "CR-1")) == "/api/users/alice/uploads/CR-1/thumbnail"
    assert paths.public_route(paths.asset_sidecar("alice", "CR-1")) == (
        "/api/users/alice/uploads/CR-1/files/upload-metadata.json"
    )
    assert paths.public_route(paths.profile_photo("alice", "png")) == "/api/users/alice/profile-photo/photo.png"
    assert paths.public_route(paths.placeholder(paths.asset_folder("alice", "CR-1"))) is None
    assert paths.public_route(paths.license_record("alice", "CR-1", "pi_1")) is None
