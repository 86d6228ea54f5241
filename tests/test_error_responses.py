"""Tests for error responses."""
from flask.testing import FlaskClient
from werkzeug.exceptions import InternalServerError, NotFound

from pklproxy.error_handling import ApiErrorHandler
from pklproxy.exc import AuthorizationError, NotFoundError, UpstreamError


def test_error_response_404(test_client: FlaskClient) -> None:
    """Test a bad route error."""
    response = test_client.get("/now/for/something/completely/different")

    assert response.status_code == 404
    assert response.content_type.startswith("text/plain")
    assert response.data.endswith(b"\n")


def test_error_response_405(test_client: FlaskClient) -> None:
    """Test only downloads are served."""
    response = test_client.post("/acme/widgets/v1/widgets.zip")

    assert response.status_code == 405
    assert response.content_type.startswith("text/plain")


def test_domain_errors_map_to_status() -> None:
    assert isinstance(UpstreamError("x"), InternalServerError)
    assert isinstance(AuthorizationError("x"), InternalServerError)
    assert isinstance(NotFoundError(), NotFound)

    response = ApiErrorHandler.error_as_text(
        UpstreamError("GitHub is down", endpoint="/x", status=502)
    )
    assert response.status_code == 500
    assert response.get_data() == b"GitHub is down\n"

    response = ApiErrorHandler.error_as_text(NotFoundError())
    assert response.status_code == 404
    assert response.get_data() == b"asset not found\n"
