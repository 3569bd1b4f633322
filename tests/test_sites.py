"""Tests for site adapters: login polling, search flow and result parsing."""

import json

import pytest

from fakes import FakePage, fast, make_session
from hitl_browser.constants import XHS_EXPLORE_URL, XHS_SEARCH_URL, YELP_SEARCH_URL, TRIPADVISOR_SEARCH_URL
from hitl_browser.errors import QueryRequired
from hitl_browser.models.note import NEED_LOGIN, NOT_IMPLEMENTED, READY, TIMEOUT, SearchResult
from hitl_browser.security import guard_serialize
from hitl_browser.sites.base import clamp_limit
from hitl_browser.sites.parsing import find_labeled_count, is_blocked, page_identity, parse_count
from hitl_browser.sites.registry import SiteRegistry, normalize_site
from hitl_browser.sites.review_sites import (
    BLOCKED_REASON,
    NO_RESULTS_REASON,
    ReviewSiteAdapter,
    TripAdvisorAdapter,
    YelpAdapter,
)
from hitl_browser.sites.xhs import (
    XhsAdapter,
    extract_note_id,
    is_logged_in,
    parse_login_signals,
    parse_search_results,
)

XHS_LOGGED_OUT = """
<html><body>
  <header><a href="/explore">发现</a><button class="login-btn">登录</button></header>
</body></html>
"""

XHS_LOGGED_IN = """
<html><body>
  <header>
    <a href="/user/profile/5f1"><img class="reds-avatar" src="a.png"></a>
    <button>发布笔记</button>
  </header>
</body></html>
"""

XHS_RESULTS = """
<html><body><div class="feeds-container">
  <section class="note-item">
    <a class="cover" href="/explore/abc123?source=web_feed"><img src="c.jpg"></a>
    <div class="footer">
      <span class="title">北京咖啡馆推荐</span>
      <p>安静有wifi的好地方</p>
      <a class="author" href="/user/profile/u1">小红</a>
      <span class="like-wrapper"><span class="count">1.2万</span></span>
    </div>
  </section>
  <section class="note-item">
    <a href="/discovery/item/abc123">duplicate of the first note</a>
  </section>
  <section class="note-item">
    <a href="/explore/def456?xsec_token=ABcd12&xsec_source=pc_search"><h3>上海早午餐</h3></a>
    <div><span>赞 88</span><span>收藏 35</span><span>评论 8</span></div>
  </section>
  <section class="note-item">
    <a href="/explore/ghi789"><h3>杭州茶馆</h3></a>
  </section>
</div></body></html>
"""

YELP_RESULTS = """
<html><head><title>Best Coffee near San Francisco - Yelp</title></head><body>
<ul>
  <li><div>
    <h3><a href="/biz/blue-bottle-sf?osq=coffee">Blue Bottle Coffee</a></h3>
    <div role="img" aria-label="4.5 star rating"></div>
    <p class="snippet-text">Great pour over and pastries</p>
    <address>66 Mint St</address>
  </div></li>
  <li><div>
    <a href="/biz/blue-bottle-sf"><img src="photo.jpg"></a>
    <h3><a href="/biz/blue-bottle-sf">Blue Bottle Coffee</a></h3>
  </div></li>
  <li><div>
    <h3><a href="/biz/sightglass">Sightglass Coffee</a></h3>
  </div></li>
</ul>
</body></html>
"""

YELP_BLOCKED = """
<html><head><title>Are you a robot?</title></head>
<body><p>Please complete the captcha to continue.</p></body></html>
"""

TRIPADVISOR_EMPTY = """
<html><head><title>Search results - Tripadvisor</title></head>
<body><p>Nothing here.</p></body></html>
"""


# ── Parsing helpers ──────────────────────────────────────────────────────────


class TestParsing:
    """Tests for shared HTML helpers."""

    @pytest.mark.parametrize(
        "text,expected",
        [("1,234", 1234), ("3.2k", 3200), ("1.5万", 15000), ("2w", 20000), ("赞 88", 88), ("", None), ("likes", None)],
    )
    def test_parse_count(self, text, expected):
        assert parse_count(text) == expected

    def test_labeled_count_uses_first_matching_line(self):
        text = "上海早午餐\n赞 88\n收藏 35\n评论 8"
        assert find_labeled_count(text, ["收藏"]) == 35
        assert find_labeled_count(text, ["分享"]) is None

    def test_page_identity_ignores_scripts(self):
        title, body = page_identity(
            "<html><head><title> Hi </title></head><body><script>var captcha=1</script><p>ok</p></body></html>"
        )
        assert title == "Hi"
        assert body == "ok"

    def test_block_detection(self):
        assert is_blocked("Are you a robot?", "")
        assert is_blocked("Yelp", "We use cookies. Manage consent")
        assert not is_blocked("Best Coffee - Yelp", "Great pour over")

    def test_clamp_limit(self):
        assert clamp_limit(None, 20, 1, 50) == 20
        assert clamp_limit(7.9, 20, 1, 50) == 7
        assert clamp_limit(500, 20, 1, 50) == 50
        assert clamp_limit(-3, 2, 0, 10) == 0


# ── Registry ─────────────────────────────────────────────────────────────────


class TestRegistry:
    """Tests for site normalization and adapter lookup."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("xhs", "xhs"),
            ("Xiaohongshu", "xhs"),
            ("YELP", "yelp"),
            (" trip-advisor ", "tripadvisor"),
            ("trip_advisor", "tripadvisor"),
            ("amazon", "xhs"),
            ("", "xhs"),
            (None, "xhs"),
        ],
    )
    def test_normalize_site(self, raw, expected):
        assert normalize_site(raw) == expected

    def test_registry_returns_matching_adapter(self):
        registry = SiteRegistry()
        assert registry.get("yelp").site_id == "yelp"
        assert registry.get("unknown").site_id == "xhs"
        assert registry.site_ids() == ["tripadvisor", "xhs", "yelp"]

    def test_only_xhs_requires_login(self):
        registry = SiteRegistry()
        assert registry.get("xhs").requires_login is True
        assert registry.get("yelp").requires_login is False
        assert registry.get("tripadvisor").requires_login is False


# ── Login polling ────────────────────────────────────────────────────────────


class TestXhsLoginSignals:
    """Tests for XHS login detection from markup."""

    def test_logged_out(self):
        signals = parse_login_signals(XHS_LOGGED_OUT)
        assert signals["login_button_found"] is True
        assert not is_logged_in(signals)

    def test_logged_in(self):
        signals = parse_login_signals(XHS_LOGGED_IN)
        assert signals["login_button_found"] is False
        assert signals["avatar_found"] is True
        assert signals["user_link_found"] is True
        assert signals["creator_button_found"] is True
        assert is_logged_in(signals)

    def test_no_account_signal_is_not_logged_in(self):
        signals = parse_login_signals("<html><body><p>loading</p></body></html>")
        assert not is_logged_in(signals)


class TestWaitForLogin:
    """Tests for the shared polling loop, driven through the XHS adapter."""

    @pytest.mark.asyncio
    async def test_zero_timeout_checks_exactly_once(self, tmp_path):
        page = FakePage(url=XHS_EXPLORE_URL, html=XHS_LOGGED_OUT)
        session = make_session(page, tmp_path)

        result = await fast(XhsAdapter()).wait_for_login(session, 0)

        assert result.status == NEED_LOGIN
        assert page.content_calls == 1
        assert result.debug["signals"]["login_button_found"] is True

    @pytest.mark.asyncio
    async def test_ready_when_login_appears_mid_wait(self, tmp_path):
        page = FakePage(
            url=XHS_EXPLORE_URL,
            html=XHS_LOGGED_IN,
            contents=[XHS_LOGGED_OUT, XHS_LOGGED_OUT],
        )
        session = make_session(page, tmp_path)

        result = await fast(XhsAdapter()).wait_for_login(session, 5)

        assert result.status == READY
        assert page.content_calls == 3

    @pytest.mark.asyncio
    async def test_timeout_when_never_logged_in(self, tmp_path):
        page = FakePage(url=XHS_EXPLORE_URL, html=XHS_LOGGED_OUT)
        session = make_session(page, tmp_path)

        result = await fast(XhsAdapter()).wait_for_login(session, 0.05)

        assert result.status == TIMEOUT
        assert page.content_calls >= 2

    @pytest.mark.asyncio
    async def test_failed_check_counts_as_not_yet(self, tmp_path):
        page = FakePage(
            url=XHS_EXPLORE_URL,
            html=XHS_LOGGED_IN,
            contents=[RuntimeError("page crashed")],
        )
        session = make_session(page, tmp_path)

        result = await fast(XhsAdapter()).wait_for_login(session, 5)

        assert result.status == READY

    @pytest.mark.asyncio
    async def test_navigates_to_explore_before_checking(self, tmp_path):
        page = FakePage(
            url="https://www.xiaohongshu.com/",
            routes={XHS_EXPLORE_URL: XHS_LOGGED_IN},
        )
        session = make_session(page, tmp_path)

        result = await fast(XhsAdapter()).wait_for_login(session, 0)

        assert result.status == READY
        assert page.visited == [XHS_EXPLORE_URL]

    @pytest.mark.asyncio
    async def test_follows_newest_tab(self, tmp_path):
        old = FakePage(url=XHS_EXPLORE_URL, html=XHS_LOGGED_OUT)
        session = make_session(old, tmp_path)
        popup = FakePage(url=XHS_EXPLORE_URL, html=XHS_LOGGED_IN)
        session.context.pages.append(popup)

        result = await fast(XhsAdapter()).wait_for_login(session, 0)

        assert result.status == READY
        assert session.page is popup

    @pytest.mark.asyncio
    async def test_review_sites_are_always_ready(self, tmp_path):
        session = make_session(FakePage(), tmp_path, site="yelp")
        result = await YelpAdapter().wait_for_login(session, 0)
        assert result.status == READY
        assert result.debug == {"login_required": False}


# ── XHS search ───────────────────────────────────────────────────────────────


class TestXhsSearch:
    """Tests for XHS result extraction and the search flow."""

    def test_extract_note_id(self):
        assert extract_note_id("/explore/abc?x=1") == "abc"
        assert extract_note_id("https://www.xiaohongshu.com/discovery/item/def#c") == "def"
        assert extract_note_id("/user/profile/1") == ""

    def test_parse_dedupes_and_reads_counts(self):
        notes = parse_search_results(XHS_RESULTS, "https://www.xiaohongshu.com", 20)

        assert [n.id for n in notes] == ["abc123", "def456", "ghi789"]
        first, second, _ = notes
        assert first.url == "https://www.xiaohongshu.com/explore/abc123"
        assert first.title == "北京咖啡馆推荐"
        assert first.desc == "安静有wifi的好地方"
        assert first.snippet == first.desc
        assert first.author == "小红"
        assert first.liked_count == 12000
        assert second.title == "上海早午餐"
        assert second.liked_count == 88
        assert second.collected_count == 35
        assert second.comments_count == 8
        assert second.shared_count is None
        assert set(first.model_dump()) == {
            "id", "url", "title", "desc", "author", "snippet", "liked_count",
            "collected_count", "comments_count", "shared_count", "rating", "location",
        }

    def test_parse_respects_limit(self):
        notes = parse_search_results(XHS_RESULTS, "https://www.xiaohongshu.com", 2)
        assert [n.id for n in notes] == ["abc123", "def456"]

    def test_tokenized_hrefs_survive_output_guard(self):
        html = """
        <section class="note-item"><a href="/explore/aaa111?xsec_token=ABcd&xsec_source=pc_search"><h3>咖啡</h3></a></section>
        <section class="note-item"><a href="/explore/bbb222?xsec_token=EFgh&xsec_source=pc_search#c"><h3>茶馆</h3></a></section>
        """
        notes = parse_search_results(html, "https://www.xiaohongshu.com", 20)

        assert [n.url for n in notes] == [
            "https://www.xiaohongshu.com/explore/aaa111",
            "https://www.xiaohongshu.com/explore/bbb222",
        ]
        guarded = json.loads(guard_serialize(SearchResult(status=READY, notes=notes).model_dump(mode="json")))
        assert [n["id"] for n in guarded["notes"]] == ["aaa111", "bbb222"]

    @pytest.mark.asyncio
    async def test_empty_query_fails_before_browser_work(self, tmp_path):
        page = FakePage(url=XHS_EXPLORE_URL, html=XHS_LOGGED_IN)
        session = make_session(page, tmp_path)

        with pytest.raises(QueryRequired):
            await fast(XhsAdapter()).search(session, "   ", 10, 1)

        assert page.content_calls == 0
        assert page.visited == []

    @pytest.mark.asyncio
    async def test_search_needs_login(self, tmp_path):
        page = FakePage(url=XHS_EXPLORE_URL, html=XHS_LOGGED_OUT)
        session = make_session(page, tmp_path)

        result = await fast(XhsAdapter()).search(session, "coffee", 10, 1)

        assert result.status == NEED_LOGIN
        assert result.notes == []
        assert page.visited == []

    @pytest.mark.asyncio
    async def test_search_returns_notes(self, tmp_path):
        page = FakePage(
            url=XHS_EXPLORE_URL,
            html=XHS_LOGGED_IN,
            routes={XHS_SEARCH_URL: XHS_RESULTS},
            result_count=4,
        )
        session = make_session(page, tmp_path)

        result = await fast(XhsAdapter()).search(session, "北京 咖啡", 2, 3)

        assert result.status == READY
        assert [n.id for n in result.notes] == ["abc123", "def456"]
        assert page.visited == [f"{XHS_SEARCH_URL}?keyword=%E5%8C%97%E4%BA%AC%20%E5%92%96%E5%95%A1"]
        assert len(page.mouse.wheels) == 3
        assert result.debug["limit"] == 2

    @pytest.mark.asyncio
    async def test_zero_scrolls_means_no_scrolling(self, tmp_path):
        page = FakePage(
            url=XHS_EXPLORE_URL,
            html=XHS_LOGGED_IN,
            routes={XHS_SEARCH_URL: XHS_RESULTS},
            result_count=4,
        )
        session = make_session(page, tmp_path)

        await fast(XhsAdapter()).search(session, "coffee", 5, 0)

        assert page.mouse.wheels == []

    @pytest.mark.asyncio
    async def test_detail_extraction_not_implemented(self, tmp_path):
        session = make_session(FakePage(), tmp_path)
        result = await XhsAdapter().open_and_extract(session, "https://www.xiaohongshu.com/explore/abc")
        assert result.status == NOT_IMPLEMENTED
        assert result.note is None


# ── Review sites ─────────────────────────────────────────────────────────────


class TestYelp:
    """Tests for the Yelp adapter."""

    def test_base_class_requires_id_extraction(self):
        with pytest.raises(TypeError):
            ReviewSiteAdapter()

    def test_parse_results(self):
        notes = YelpAdapter().parse_results(YELP_RESULTS, 20)

        assert [n.id for n in notes] == ["blue-bottle-sf", "sightglass"]
        first = notes[0]
        assert first.url == "https://www.yelp.com/biz/blue-bottle-sf?osq=coffee"
        assert first.title == "Blue Bottle Coffee"
        assert first.rating == 4.5
        assert first.snippet == "Great pour over and pastries"
        assert first.location == "66 Mint St"
        assert notes[1].rating is None

    @pytest.mark.asyncio
    async def test_empty_query_fails_before_browser_work(self, tmp_path):
        page = FakePage()
        session = make_session(page, tmp_path, site="yelp")

        with pytest.raises(QueryRequired):
            await fast(YelpAdapter()).search(session, "", 10, 1)

        assert page.visited == []

    @pytest.mark.asyncio
    async def test_search(self, tmp_path):
        page = FakePage(routes={YELP_SEARCH_URL: YELP_RESULTS}, result_count=3)
        session = make_session(page, tmp_path, site="yelp")

        result = await fast(YelpAdapter()).search(session, "coffee sf", 1, 1)

        assert result.status == READY
        assert [n.id for n in result.notes] == ["blue-bottle-sf"]
        assert page.visited == [f"{YELP_SEARCH_URL}?find_desc=coffee%20sf"]
        assert page.mouse.wheels == [(0, 2200)]

    @pytest.mark.asyncio
    async def test_blocked_page(self, tmp_path):
        page = FakePage(routes={YELP_SEARCH_URL: YELP_BLOCKED})
        session = make_session(page, tmp_path, site="yelp")

        result = await fast(YelpAdapter()).search(session, "coffee", 10, 2)

        assert result.status == READY
        assert result.notes == []
        assert result.reason == BLOCKED_REASON
        assert page.mouse.wheels == []

    @pytest.mark.asyncio
    async def test_reopens_closed_page(self, tmp_path):
        closed = FakePage()
        closed.closed = True
        session = make_session(closed, tmp_path, site="yelp")

        await fast(YelpAdapter()).search(session, "coffee", 10, 0)

        assert session.page is not closed
        assert session.page.visited[0] == "https://www.yelp.com"


class TestTripAdvisor:
    """Tests for the TripAdvisor adapter."""

    def test_extract_id(self):
        adapter = TripAdvisorAdapter()
        href = "/Restaurant_Review-g60763-d423-Reviews-Katz_s-New_York.html?m=1"
        assert adapter.extract_id(href) == "Restaurant_Review-g60763-d423-Reviews-Katz_s-New_York.html"

    def test_parse_results_falls_back_to_heading(self):
        html = """
        <div>
          <a href="/Hotel_Review-g1-d2-Reviews-Inn.html"><img src="x.jpg"></a>
          <h2>The Inn</h2>
          <div aria-label="4.0 of 5 bubbles"></div>
          <div class="review-snippet">Lovely stay</div>
        </div>
        """
        notes = TripAdvisorAdapter().parse_results(html, 10)

        assert len(notes) == 1
        assert notes[0].title == "The Inn"
        assert notes[0].rating == 4.0
        assert notes[0].snippet == "Lovely stay"
        assert notes[0].url == "https://www.tripadvisor.com/Hotel_Review-g1-d2-Reviews-Inn.html"

    @pytest.mark.asyncio
    async def test_no_results_reports_reason(self, tmp_path):
        page = FakePage(routes={TRIPADVISOR_SEARCH_URL: TRIPADVISOR_EMPTY}, result_count=0)
        session = make_session(page, tmp_path, site="tripadvisor")

        result = await fast(TripAdvisorAdapter()).search(session, "katz deli", 10, 1)

        assert result.status == READY
        assert result.notes == []
        assert result.reason == NO_RESULTS_REASON
        assert page.load_states == ["networkidle"]
