import pytest
import requests

from conftest import HONDA_PAGE, FakeResponse, FakeSession, html_response
from errors import BadStatusError, FetchError, ParseError
from scraper import MotorcycleScraper, is_noise_image, normalize_image_url

URL = "https://jmmoto.ru/moto/honda-cb500x"


def make_scraper(routes):
    return MotorcycleScraper(session=FakeSession(routes), retry_delays=[])


def test_extracts_full_listing():
    data = make_scraper({URL: html_response(HONDA_PAGE)}).extract(URL)

    assert data.name == "Honda CB500X"
    assert data.year == 2021
    assert data.mileage == 15000
    assert data.mileage_unit == "km"
    assert data.volume == 471
    assert data.volume_unit == "cc"
    assert data.frame_number == "PC64-1234567"


def test_images_are_absolute_deduplicated_and_filtered():
    data = make_scraper({URL: html_response(HONDA_PAGE)}).extract(URL)

    assert data.image_urls == [
        "https://jmmoto.ru/uploads/cb500x-1.jpg",
        "https://cdn.jmmoto.ru/uploads/cb500x-2.jpg",
        "https://jmmoto.ru/uploads/cb500x-3.jpg",
    ]


def test_page_without_brand_gives_empty_name():
    html = """<html><body>
        <h1>Распродажа мотоциклов</h1>
        <div>Год: 2019</div>
        <img src="/uploads/a.jpg">
    </body></html>"""
    data = MotorcycleScraper(session=FakeSession(), retry_delays=[]).parse(html)

    assert data.name == ""
    assert data.year == 2019
    assert data.mileage is None
    assert data.image_urls == ["https://jmmoto.ru/uploads/a.jpg"]


def test_page_with_nothing_recognizable_is_not_an_error():
    data = MotorcycleScraper(session=FakeSession(), retry_delays=[]).parse(
        "<html><body><p>Страница в разработке</p></body></html>"
    )
    assert data.is_empty()


def test_heading_fallback():
    html = "<html><body><h1>  Kawasaki   Ninja 650  </h1></body></html>"
    data = MotorcycleScraper(session=FakeSession(), retry_delays=[]).parse(html)
    assert data.name == "Kawasaki Ninja 650"


def test_first_matching_heading_wins():
    html = "<html><body><h1>Yamaha MT-07</h1><h2>Suzuki GSX-R750</h2></body></html>"
    data = MotorcycleScraper(session=FakeSession(), retry_delays=[]).parse(html)
    assert data.name == "Yamaha MT-07"


def test_markup_fallback_with_split_text_nodes():
    html = "<html><body><span>Suzuki<!-- --> <!-- -->GSX</span></body></html>"
    data = MotorcycleScraper(session=FakeSession(), retry_delays=[]).parse(html)
    assert data.name == "Suzuki GSX"


def test_displacement_units():
    scraper = MotorcycleScraper(session=FakeSession(), retry_delays=[])
    for unit in ("cc", "см3", "см³"):
        data = scraper.parse(f"<html><body><div>Объем: 649 {unit}</div></body></html>")
        assert data.volume == 649, unit


def test_normalize_image_url():
    assert normalize_image_url("/img/a.jpg") == "https://jmmoto.ru/img/a.jpg"
    assert normalize_image_url("//cdn.example.com/a.jpg") == "https://cdn.example.com/a.jpg"
    assert normalize_image_url("http://other.example/a.jpg") == "http://other.example/a.jpg"
    assert normalize_image_url("img/a.jpg") == "https://jmmoto.ru/img/a.jpg"


def test_noise_filter_is_case_insensitive():
    assert is_noise_image("https://jmmoto.ru/static/Site-LOGO.png")
    assert is_noise_image("https://jmmoto.ru/favicon.ico")
    assert not is_noise_image("https://jmmoto.ru/uploads/bike.jpg")


def test_bad_status_raises():
    scraper = make_scraper({URL: html_response("<html></html>", status_code=404)})
    with pytest.raises(BadStatusError) as exc_info:
        scraper.extract(URL)
    assert exc_info.value.status_code == 404
    assert exc_info.value.stage == "extract"


def test_transport_failure_raises_fetch_error():
    scraper = make_scraper({URL: requests.Timeout("timed out")})
    with pytest.raises(FetchError):
        scraper.extract(URL)


def test_retries_before_giving_up(monkeypatch):
    monkeypatch.setattr("scraper.time.sleep", lambda s: None)
    session = FakeSession({URL: [requests.ConnectionError("reset"), html_response(HONDA_PAGE)]})
    scraper = MotorcycleScraper(session=session, retry_delays=[0.5])

    data = scraper.extract(URL)

    assert data.name == "Honda CB500X"
    assert len(session.calls) == 2


def test_non_html_response_is_parse_error():
    response = FakeResponse(content=b"\x89PNG", headers={"Content-Type": "image/png"})
    with pytest.raises(ParseError):
        make_scraper({URL: response}).extract(URL)


def test_empty_document_is_parse_error():
    with pytest.raises(ParseError):
        make_scraper({URL: html_response("   ")}).extract(URL)


def test_noise_filter_ignores_host():
    assert not is_noise_image("https://icons-cdn.example/uploads/bike.jpg")
    assert is_noise_image("https://icons-cdn.example/static/icon-phone.svg")


def test_photos_on_icon_named_cdn_are_kept():
    html = """<html><body>
        <img src="https://iconic-cdn.jmmoto.ru/uploads/bike.jpg">
        <img src="https://iconic-cdn.jmmoto.ru/static/logo.png">
    </body></html>"""
    data = MotorcycleScraper(session=FakeSession(), retry_delays=[]).parse(html)
    assert data.image_urls == ["https://iconic-cdn.jmmoto.ru/uploads/bike.jpg"]
