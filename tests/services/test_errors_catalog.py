from failoverlab.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("teardown_leak", step="delete_cluster", reason="throttled")

    assert "Teardown step 'delete_cluster' failed: throttled" in message
    assert "Suggested action:" in message
