from failoverlab.services.credentials import resolve_credentials


def test_credentials_absent_without_secret():
    assert resolve_credentials({"AWS_ACCESS_KEY_ID": "AKIA"}) is None


def test_empty_values_count_as_absent():
    assert resolve_credentials({"AWS_ACCESS_KEY_ID": "", "AWS_SECRET_ACCESS_KEY": " "}) is None


def test_credentials_include_optional_session_token():
    credentials = resolve_credentials(
        {
            "AWS_ACCESS_KEY_ID": "AKIA",
            "AWS_SECRET_ACCESS_KEY": "secret",
            "AWS_SESSION_TOKEN": "token",
        }
    )

    assert credentials.access_key_id == "AKIA"
    assert credentials.secret_access_key == "secret"
    assert credentials.session_token == "token"
