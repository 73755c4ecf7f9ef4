import unittest
from unittest.mock import patch, MagicMock

import pytest
import requests

from routetrack.config import RouteTrackConfig
from routetrack.exceptions import PolylineDecodeError, RouteNotFoundError, TransportError
from routetrack.geometry import Position, VehicleProfile
from routetrack.routing import (
    RoutingClient,
    build_route_params,
    parse_route_response,
)

START = Position(10.7769, 106.7009)
END = Position(10.7626, 106.6602)

EXPECTED = (Position(38.5, -120.2), Position(40.7, -120.95), Position(43.252, -126.453))


def _assert_positions(actual, expected=EXPECTED):
    assert len(actual) == len(expected)
    for a, e in zip(actual, expected):
        assert a.latitude == pytest.approx(e.latitude)
        assert a.longitude == pytest.approx(e.longitude)


class TestParseRouteResponse:

    def test_geojson_points(self):
        data = {
            "code": "OK",
            "paths": [
                {
                    "distance": 1500.5,
                    "time": 120000,
                    "points": {
                        "type": "LineString",
                        "coordinates": [[p.longitude, p.latitude] for p in EXPECTED],
                    },
                    "instructions": [{"text": "Turn left"}],
                }
            ],
        }
        result = parse_route_response(data)
        _assert_positions(result.coordinates)
        assert result.distance == 1500.5
        assert result.duration == 120000
        assert result.instructions == [{"text": "Turn left"}]

    def test_array_points(self):
        data = {"code": "OK", "paths": [{"points": [[p.latitude, p.longitude] for p in EXPECTED]}]}
        result = parse_route_response(data)
        _assert_positions(result.coordinates)
        assert result.instructions == []
        assert result.distance is None

    def test_encoded_points(self):
        data = {"code": "OK", "paths": [{"points": "_p~iF~ps|U_ulLnnqC_mqNvxq`@"}]}
        _assert_positions(parse_route_response(data).coordinates)

    def test_all_formats_agree(self):
        geojson = {"coordinates": [[p.longitude, p.latitude] for p in EXPECTED]}
        array = [[p.latitude, p.longitude] for p in EXPECTED]
        encoded = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"
        results = [
            parse_route_response({"code": "OK", "paths": [{"points": points}]}).coordinates
            for points in (geojson, array, encoded)
        ]
        for coords in results[1:]:
            _assert_positions(coords, results[0])

    def test_unknown_points_shape_gives_empty_coordinates(self):
        assert parse_route_response({"code": "OK", "paths": [{"points": 42}]}).coordinates == ()
        assert parse_route_response({"code": "OK", "paths": [{}]}).coordinates == ()

    def test_only_first_path_is_used(self):
        data = {
            "code": "OK",
            "paths": [{"points": [[1.0, 2.0], [3.0, 4.0]]}, {"points": [[5.0, 6.0]]}],
        }
        assert parse_route_response(data).coordinates == (Position(1.0, 2.0), Position(3.0, 4.0))

    @pytest.mark.parametrize(
        "data",
        [
            {"code": "ERROR", "paths": [{"points": []}]},
            {"code": "OK", "paths": []},
            {"code": "OK"},
            {},
        ],
    )
    def test_not_found(self, data):
        with pytest.raises(RouteNotFoundError):
            parse_route_response(data)

    def test_malformed_polyline(self):
        with pytest.raises(PolylineDecodeError):
            parse_route_response({"code": "OK", "paths": [{"points": "_p~i"}]})

    @pytest.mark.parametrize(
        "points",
        [
            [[10.0]],
            [["a", "b"]],
            [None],
            {"type": "LineString", "coordinates": [[106.0]]},
            {"type": "LineString", "coordinates": None},
        ],
    )
    def test_malformed_points_are_not_found(self, points):
        with pytest.raises(RouteNotFoundError):
            parse_route_response({"code": "OK", "paths": [{"points": points}]})


def test_build_route_params():
    params = build_route_params(START, END, VehicleProfile.CAR, "secret", RouteTrackConfig())
    assert ("api-version", "1.1") in params
    assert ("apikey", "secret") in params
    assert ("vehicle", "car") in params
    points = [value for key, value in params if key == "point"]
    assert points == ["10.7769,106.7009", "10.7626,106.6602"]


def _ok_response(payload):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


def _error_response(status_code):
    inner = requests.Response()
    inner.status_code = status_code
    response = MagicMock()
    response.raise_for_status.side_effect = requests.exceptions.HTTPError(
        f"{status_code} Error", response=inner
    )
    return response


OK_PAYLOAD = {
    "code": "OK",
    "paths": [{"distance": 5000, "time": 600000, "points": [[10.7769, 106.7009], [10.7626, 106.6602]]}],
}


class TestRoutingClient(unittest.TestCase):

    def setUp(self):
        self.config = RouteTrackConfig(routing_timeout=5)
        self.client = RoutingClient("secret", self.config)

    @patch("routetrack.routing.requests.get")
    def test_find_route_success(self, mock_get):
        mock_get.return_value = _ok_response(OK_PAYLOAD)

        result = self.client.find_route(START, END, "bike")

        self.assertEqual(len(result.coordinates), 2)
        self.assertEqual(result.distance, 5000)
        mock_get.assert_called_once()
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], self.config.routing_api_url)
        self.assertEqual(kwargs["timeout"], 5)
        self.assertIn(("vehicle", "bike"), kwargs["params"])

    @patch("routetrack.routing.requests.get")
    def test_default_vehicle_profile(self, mock_get):
        mock_get.return_value = _ok_response(OK_PAYLOAD)
        self.client.find_route(START, END)
        _, kwargs = mock_get.call_args
        self.assertIn(("vehicle", "motorcycle"), kwargs["params"])

    @patch("routetrack.routing.time.sleep")
    @patch("routetrack.routing.requests.get")
    def test_retries_rate_limit_with_backoff(self, mock_get, mock_sleep):
        mock_get.side_effect = [
            _error_response(429),
            _error_response(503),
            _ok_response(OK_PAYLOAD),
        ]

        result = self.client.find_route(START, END)

        self.assertEqual(len(result.coordinates), 2)
        self.assertEqual(mock_get.call_count, 3)
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [2.0, 4.0])

    @patch("routetrack.routing.time.sleep")
    @patch("routetrack.routing.requests.get")
    def test_gives_up_after_max_retries(self, mock_get, mock_sleep):
        mock_get.side_effect = [_error_response(500) for _ in range(10)]

        with self.assertRaises(TransportError):
            self.client.find_route(START, END)
        self.assertEqual(mock_get.call_count, 4)

    @patch("routetrack.routing.time.sleep")
    @patch("routetrack.routing.requests.get")
    def test_client_error_is_not_retried(self, mock_get, mock_sleep):
        mock_get.return_value = _error_response(403)

        with self.assertRaises(TransportError):
            self.client.find_route(START, END)
        mock_get.assert_called_once()
        mock_sleep.assert_not_called()

    @patch("routetrack.routing.requests.get")
    def test_connection_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("unreachable")
        with self.assertRaises(TransportError):
            self.client.find_route(START, END)

    @patch("routetrack.routing.requests.get")
    def test_invalid_json(self, mock_get):
        response = _ok_response(None)
        response.json.side_effect = ValueError("not json")
        mock_get.return_value = response
        with self.assertRaises(TransportError):
            self.client.find_route(START, END)

    @patch("routetrack.routing.requests.get")
    def test_route_not_found(self, mock_get):
        mock_get.return_value = _ok_response({"code": "NOT_FOUND", "paths": []})
        with self.assertRaises(RouteNotFoundError):
            self.client.find_route(START, END)

    @patch("routetrack.routing.requests.get")
    def test_empty_coordinates_is_not_found(self, mock_get):
        mock_get.return_value = _ok_response({"code": "OK", "paths": [{"points": 42}]})
        with self.assertRaises(RouteNotFoundError):
            self.client.find_route(START, END)

    @patch("routetrack.routing.requests.get")
    def test_malformed_coordinates_are_not_found(self, mock_get):
        mock_get.return_value = _ok_response(
            {"code": "OK", "paths": [{"points": [[10.0, 106.0], [10.1]]}]}
        )
        with self.assertRaises(RouteNotFoundError):
            self.client.find_route(START, END)


if __name__ == "__main__":
    unittest.main()
