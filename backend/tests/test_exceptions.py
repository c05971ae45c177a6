from app.core.exceptions import AppError, InfeasibilityError, JobStateError, ResourceNotFoundError, SchedulerError


def test_scheduler_error_structure():
    err = SchedulerError(message="Test error", details={"foo": "bar"})
    assert err.status_code == 400
    assert err.message == "Test error"
    assert err.details == {"foo": "bar"}
    assert isinstance(err, AppError)


def test_app_error_defaults():
    err = AppError("Generic error")
    assert err.status_code == 500
    assert err.details == {}


def test_status_codes_of_domain_errors():
    assert InfeasibilityError("no rooms").status_code == 422
    assert JobStateError("already completed").status_code == 409
    missing = ResourceNotFoundError("Schedule", "abc")
    assert missing.status_code == 404
    assert missing.message == "Schedule with id abc not found"


def test_app_errors_are_rendered_by_the_handler(client):
    response = client.get("/api/schedules/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"message": "Schedule with id does-not-exist not found", "details": {}}
