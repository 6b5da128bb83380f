"""
Unit tests for the invoke and timeline commands
"""
import json

import pytest

from xdrinternals.invoke import invoke, timeline

from conftest import PORTAL, make_response

ALERTS = PORTAL + "apiproxy/mtp/alertsApiService/alerts"
TIMELINE = PORTAL + "apiproxy/mtp/mdeTimelineExperience/machines/dev-1/events/"


@pytest.fixture
def from_files(monkeypatch, connected_session):
    monkeypatch.setattr("xdrinternals.invoke.session_from_files", lambda **kwargs: connected_session)
    return connected_session


class TestInvoke:
    """Test cases for the invoke command"""

    def test_prints_response(self, from_files, portal, tmp_path, capsys):
        portal.route("POST", ALERTS, make_response(json_body={"Updated": 1}))

        invoke("/apiproxy/mtp/alertsApiService/alerts", method="POST", body='{"AlertIds": ["da1"]}',
               config=str(tmp_path / ".conf"))

        assert json.loads(capsys.readouterr().out) == {"Updated": 1}
        assert json.loads(portal.calls[0]["data"]) == {"AlertIds": ["da1"]}

    def test_invalid_body_exits(self, from_files, portal, tmp_path):
        with pytest.raises(SystemExit):
            invoke(ALERTS, method="POST", body="{not json", config=str(tmp_path / ".conf"))

        assert portal.calls == []

    def test_failed_call_exits(self, from_files, portal, tmp_path):
        portal.route("GET", ALERTS, make_response(status=401))

        with pytest.raises(SystemExit):
            invoke(ALERTS, config=str(tmp_path / ".conf"))

    def test_failure_is_written_to_error_log(self, from_files, portal, tmp_path):
        portal.route("GET", ALERTS, make_response(status=401))
        log_dir = tmp_path / "logs"

        with pytest.raises(SystemExit):
            invoke(ALERTS, config=str(tmp_path / ".conf"), log_dir=str(log_dir))

        assert "Invoke failed" in (log_dir / "error.log").read_text()


class TestTimeline:
    """Test cases for the timeline command"""

    def test_writes_json_lines(self, from_files, portal, tmp_path):
        conf = tmp_path / ".conf"
        conf.write_text("[variables]\ntimeline_page_size=50\n")
        portal.route("GET", TIMELINE, make_response(json_body={"Items": [{"ActionType": "ProcessCreated"},
                                                                         {"ActionType": "FileCreated"}]}))
        output_dir = tmp_path / "output"

        timeline("dev-1", from_date="2024-01-01", to_date="2024-01-02", output_dir=str(output_dir), config=str(conf))

        lines = (output_dir / "timeline_dev-1.json").read_text().splitlines()
        assert [json.loads(line)["ActionType"] for line in lines] == ["ProcessCreated", "FileCreated"]
        assert portal.calls[0]["params"]["pageSize"] == 50
