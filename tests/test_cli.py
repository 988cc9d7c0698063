import json
from pathlib import Path

from studiopass.cli import main
from studiopass.config.settings import get_settings

CATALOG = Path(__file__).resolve().parents[1] / "data" / "catalogs" / "studios.json"


def test_distance_command(capsys):
    assert main(["distance", "33.5138", "36.2765", "33.5150", "36.2900"]) == 0
    assert capsys.readouterr().out.strip() == "1.3 km"


def test_distance_command_json(capsys):
    assert main(["distance", "0", "0", "0", "0", "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data == {"distanceKm": 0.0, "distance": "0 m"}


def test_fallbacks_command(capsys):
    assert main(["fallbacks", "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert [f["id"] for f in data] == ["damascus", "berlin", "munich"]


def test_studios_command(capsys):
    code = main(["studios", "--lat", "52.52", "--lng", "13.405", "--radius-km", "10", "--catalog", str(CATALOG), "--json"])
    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert [s["studioId"] for s in data] == ["mitte-spin", "42"]


def test_serve_command_runs_uvicorn(monkeypatch):
    import uvicorn

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    assert main(["serve", "--port", "9001"]) == 0
    assert calls == [
        ("studiopass.api.app:app", {"host": "127.0.0.1", "port": 9001, "reload": False, "log_level": get_settings().app.log_level.lower()})
    ]
