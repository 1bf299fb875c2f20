"""Tests for the crawl runner state machine."""

import pytest

from conftest import FakeFetcher, page, redirect, timeout_error
from sitecrawler.content import DefaultContentProcessor
from sitecrawler.models import CrawledContent, CrawlLink, CrawlStatus
from sitecrawler.robots import RobotsFile
from sitecrawler.runner import CrawlRunner, strip_fragment
from sitecrawler.scheduler import RequestProcessor

BASE = "https://x.test/"


def make_runner(fetcher, options, robots_txt="User-agent: *\nAllow: /\n", **kwargs) -> CrawlRunner:
    return CrawlRunner(
        base_uri=BASE,
        robots_file=RobotsFile(robots_txt),
        request_processor=RequestProcessor(fetcher),
        options=options,
        user_agent="TestBot",
        **kwargs,
    )


async def crawl(runner: CrawlRunner):
    processor = DefaultContentProcessor()

    async def on_success(result, crawl_state):
        content = processor.parse(crawl_state.location, result.headers, result.content)
        runner.add_result(crawl_state.location, content)

    return await runner.process(on_success)


def by_location(results):
    return {r.location: r for r in results}


class TestStripFragment:
    def test_removes_fragment(self):
        assert strip_fragment("https://x.test/page#section") == "https://x.test/page"

    def test_keeps_query(self):
        assert strip_fragment("https://x.test/page?a=1#top") == "https://x.test/page?a=1"

    def test_without_fragment_unchanged(self):
        assert strip_fragment("https://x.test/page") == "https://x.test/page"


class TestAdmission:
    def test_base_uri_is_queued(self, fast_options):
        """Creating the runner should queue the base URI."""
        runner = make_runner(FakeFetcher(), fast_options)
        assert runner.request_processor.pending_requests == 1
        assert BASE in runner.seen_uris

    def test_other_host_is_ignored(self, fast_options):
        """URIs on other hosts should not be queued."""
        runner = make_runner(FakeFetcher(), fast_options)
        runner.add_request("https://other.test/page")
        assert runner.request_processor.pending_requests == 1
        assert runner.crawled_uris == []

    def test_host_alias_is_allowed(self, fast_options):
        """Configured host aliases should be crawlable."""
        runner = make_runner(FakeFetcher(), fast_options, host_aliases=["www.x.test"])
        runner.add_request("https://www.x.test/page")
        runner.add_request("https://other.test/page")
        assert runner.request_processor.pending_requests == 2

    def test_page_limit(self, fast_options):
        """Once the page limit is reached further requests are ignored."""
        runner = make_runner(FakeFetcher(), fast_options, max_number_of_pages_to_crawl=3)
        runner.add_request("https://x.test/a")
        runner.add_request("https://x.test/b")
        runner.add_request("https://x.test/c")

        assert runner.request_processor.pending_requests == 3
        assert "https://x.test/c" not in runner.seen_uris
        assert runner.crawl_states == {}

    def test_robots_blocked_request(self, fast_options):
        """A disallowed URI should be blocked without being fetched."""
        runner = make_runner(
            FakeFetcher(), fast_options, robots_txt="User-agent: *\nDisallow: /private\n",
        )
        runner.add_request("https://x.test/private")

        assert runner.request_processor.pending_requests == 1
        assert len(runner.crawled_uris) == 1
        blocked = runner.crawled_uris[0]
        assert blocked.location == "https://x.test/private"
        assert blocked.status == CrawlStatus.ROBOTS_BLOCKED
        assert blocked.requests == ()

    def test_nofollow_link_is_skipped(self, fast_options):
        """Links with rel=nofollow should not be queued."""
        runner = make_runner(FakeFetcher(), fast_options)
        runner.add_link(CrawlLink(location="https://x.test/a", relationship="NoFollow"))
        assert runner.request_processor.pending_requests == 1

    def test_seen_link_is_skipped(self, fast_options):
        """Links already seen should not be queued again."""
        runner = make_runner(FakeFetcher(), fast_options)
        runner.add_link(CrawlLink(location="https://x.test/#top"))
        runner.add_link(CrawlLink(location="https://x.test/a"))
        runner.add_link(CrawlLink(location="https://x.test/a#section"))
        assert runner.request_processor.pending_requests == 2


class TestCrawlStateMachine:
    async def test_crawls_linked_pages(self, fast_options):
        """Pages linked from the base page should be crawled once each."""
        fetcher = FakeFetcher({
            BASE: [page(BASE, body='<a href="/a">A</a><a href="/a#x">A again</a><a href="https://other.test/">O</a>')],
            "https://x.test/a": [page("https://x.test/a", body='<a href="/">Home</a>')],
        })
        runner = make_runner(fetcher, fast_options)

        results = await crawl(runner)

        assert sorted(r.location for r in results) == [BASE, "https://x.test/a"]
        assert all(r.status == CrawlStatus.CRAWLED for r in results)
        assert sorted(fetcher.calls) == [BASE, "https://x.test/a"]
        home = by_location(results)[BASE]
        assert home.content is not None
        assert home.requests[0].status_code == 200
        assert home.requests[0].is_successful_status
        assert home.redirect_chain is None

    async def test_robots_blocked_link_is_never_fetched(self, fast_options):
        """A link to a disallowed path should produce a blocked result with no requests."""
        fetcher = FakeFetcher({BASE: [page(BASE, body='<a href="/private">P</a>')]})
        runner = make_runner(fetcher, fast_options, robots_txt="User-agent: *\nDisallow: /private\n")

        results = by_location(await crawl(runner))

        assert "https://x.test/private" not in fetcher.calls
        assert results["https://x.test/private"].status == CrawlStatus.ROBOTS_BLOCKED
        assert results["https://x.test/private"].requests == ()

    async def test_redirect_chain_is_recorded(self, fast_options):
        """A followed redirect should be recorded on the final location."""
        fetcher = FakeFetcher({
            BASE: [page(BASE, body='<a href="/a">A</a>')],
            "https://x.test/a": [redirect("https://x.test/a", "/b")],
            "https://x.test/b": [page("https://x.test/b")],
        })
        runner = make_runner(fetcher, fast_options)

        results = by_location(await crawl(runner))

        assert "https://x.test/a" not in results
        final = results["https://x.test/b"]
        assert final.status == CrawlStatus.CRAWLED
        assert len(final.redirect_chain) == 1
        hop = final.redirect_chain[0]
        assert hop.location == "https://x.test/a"
        assert [r.status_code for r in hop.requests] == [301]
        assert [r.status_code for r in final.requests] == [200]
        assert "https://x.test/a" not in runner.crawl_states

    async def test_redirect_target_fragment_is_stripped(self, fast_options):
        """Redirect targets are resolved and stripped of fragments."""
        fetcher = FakeFetcher({
            BASE: [redirect(BASE, "https://x.test/home#top", status=302)],
            "https://x.test/home": [page("https://x.test/home")],
        })
        runner = make_runner(fetcher, fast_options)

        results = by_location(await crawl(runner))

        assert results["https://x.test/home"].redirect_chain[0].location == BASE

    async def test_max_redirects(self, fast_options):
        """A redirect loop should stop at the redirect limit."""
        fetcher = FakeFetcher({
            BASE: [redirect(BASE, "/loop")],
            "https://x.test/loop": [redirect("https://x.test/loop", "/")],
        })
        runner = make_runner(fetcher, fast_options, max_number_of_redirects=3)

        results = await crawl(runner)

        assert len(results) == 1
        assert results[0].status == CrawlStatus.MAX_REDIRECTS
        assert len(results[0].redirect_chain) == 3
        assert len(fetcher.calls) == 3

    async def test_redirect_to_other_host_is_dropped(self, fast_options):
        """Redirects off the site should not be followed."""
        fetcher = FakeFetcher({BASE: [redirect(BASE, "https://other.test/")]})
        runner = make_runner(fetcher, fast_options)

        results = await crawl(runner)

        assert results == []
        assert fetcher.calls == [BASE]

    async def test_redirect_without_location_is_terminal(self, fast_options):
        """A redirect status without Location is recorded as crawled."""
        fetcher = FakeFetcher({BASE: [page(BASE, status=301)]})
        runner = make_runner(fetcher, fast_options)

        results = await crawl(runner)

        assert results[0].status == CrawlStatus.CRAWLED
        assert results[0].content is None

    async def test_max_retries_on_timeouts(self, fast_options):
        """Repeated transport failures should end with MAX_RETRIES."""
        flaky = "https://x.test/flaky"
        fetcher = FakeFetcher({
            BASE: [page(BASE, body='<a href="/flaky">F</a>')],
            flaky: [timeout_error(flaky)],
        })
        runner = make_runner(fetcher, fast_options, number_of_retries=3)

        results = by_location(await crawl(runner))

        assert results[flaky].status == CrawlStatus.MAX_RETRIES
        assert len(results[flaky].requests) == 3
        assert all(r.status_code is None for r in results[flaky].requests)
        assert fetcher.calls.count(flaky) == 3

    async def test_server_error_is_retried(self, fast_options):
        """5xx responses should be retried until a success."""
        fetcher = FakeFetcher({BASE: [page(BASE, status=503), page(BASE, status=200)]})
        runner = make_runner(fetcher, fast_options)

        results = await crawl(runner)

        assert len(results) == 1
        assert results[0].status == CrawlStatus.CRAWLED
        assert [r.status_code for r in results[0].requests] == [503, 200]

    async def test_server_error_hits_retry_limit(self, fast_options):
        """Persistent 5xx responses should end with MAX_RETRIES."""
        fetcher = FakeFetcher({BASE: [page(BASE, status=500)]})
        runner = make_runner(fetcher, fast_options, number_of_retries=2)

        results = await crawl(runner)

        assert results[0].status == CrawlStatus.MAX_RETRIES
        assert [r.status_code for r in results[0].requests] == [500, 500]

    async def test_client_error_is_terminal(self, fast_options):
        """4xx responses are recorded once and not retried."""
        fetcher = FakeFetcher({
            BASE: [page(BASE, body='<a href="/missing">M</a>')],
            "https://x.test/missing": [page("https://x.test/missing", status=404)],
        })
        runner = make_runner(fetcher, fast_options)

        results = by_location(await crawl(runner))

        missing = results["https://x.test/missing"]
        assert missing.status == CrawlStatus.CRAWLED
        assert missing.content is None
        assert [r.status_code for r in missing.requests] == [404]
        assert fetcher.calls.count("https://x.test/missing") == 1

    async def test_noindex_page_is_robots_blocked(self, fast_options):
        """An in-page noindex should block the content but keep the requests."""
        fetcher = FakeFetcher({
            BASE: [page(BASE, body='<html><head><meta name="robots" content="noindex"></head><body><a href="/a">A</a></body></html>')],
            "https://x.test/a": [page("https://x.test/a")],
        })
        runner = make_runner(fetcher, fast_options)

        results = by_location(await crawl(runner))

        assert results[BASE].status == CrawlStatus.ROBOTS_BLOCKED
        assert results[BASE].content is None
        assert [r.status_code for r in results[BASE].requests] == [200]
        assert "https://x.test/a" not in results

    async def test_nofollow_page_links_are_not_followed(self, fast_options):
        """X-Robots-Tag nofollow keeps the page but ignores its links."""
        fetcher = FakeFetcher({
            BASE: [page(BASE, body='<a href="/a">A</a>', headers={"x-robots-tag": "nofollow"})],
        })
        runner = make_runner(fetcher, fast_options)

        results = await crawl(runner)

        assert [r.location for r in results] == [BASE]
        assert results[0].status == CrawlStatus.CRAWLED
        assert fetcher.calls == [BASE]

    async def test_page_limit_bounds_crawl(self, fast_options):
        """No more than max pages should be crawled."""
        links = "".join(f'<a href="/p{i}">{i}</a>' for i in range(10))
        fetcher = FakeFetcher({BASE: [page(BASE, body=links)]})
        runner = make_runner(fetcher, fast_options, max_number_of_pages_to_crawl=3)

        results = await crawl(runner)

        assert len(results) == 3
        assert len(fetcher.calls) == 3

    async def test_one_result_per_location(self, fast_options):
        """Pages linking to each other should still produce one result each."""
        fetcher = FakeFetcher({
            BASE: [page(BASE, body='<a href="/a">A</a><a href="/b">B</a>')],
            "https://x.test/a": [page("https://x.test/a", body='<a href="/b">B</a><a href="/">H</a>')],
            "https://x.test/b": [page("https://x.test/b", body='<a href="/a#top">A</a>')],
        })
        runner = make_runner(fetcher, fast_options)

        results = await crawl(runner)

        locations = [r.location for r in results]
        assert len(locations) == len(set(locations)) == 3

    async def test_success_action_receives_state(self, fast_options):
        """The success action gets the request result and the crawl state."""
        fetcher = FakeFetcher({BASE: [page(BASE, body="hello")]})
        runner = make_runner(fetcher, fast_options)
        seen = []

        async def on_success(result, crawl_state):
            seen.append((result.content, crawl_state.location, len(crawl_state.requests)))
            runner.add_result(crawl_state.location, CrawledContent())

        results = await runner.process(on_success)

        assert seen == [("hello", BASE, 1)]
        assert results[0].status == CrawlStatus.CRAWLED

    async def test_task_fault_propagates(self, fast_options):
        """Unexpected fetch exceptions abort the whole crawl."""
        fetcher = FakeFetcher({BASE: [KeyError("broken")]})
        runner = make_runner(fetcher, fast_options)

        with pytest.raises(KeyError):
            await crawl(runner)

    async def test_redirect_onto_queued_uri_is_fetched_once(self, fast_options):
        """A redirect to a URI already in the queue should reuse that request."""
        fast_options.max_simultaneous_requests = 1
        fetcher = FakeFetcher({
            BASE: [page(BASE, body='<a href="/a">A</a><a href="/b">B</a>')],
            "https://x.test/a": [redirect("https://x.test/a", "/b")],
            "https://x.test/b": [page("https://x.test/b")],
        })
        runner = make_runner(fetcher, fast_options)

        results = await crawl(runner)

        assert fetcher.calls.count("https://x.test/b") == 1
        locations = [r.location for r in results]
        assert sorted(locations) == [BASE, "https://x.test/b"]
        final = by_location(results)["https://x.test/b"]
        assert [hop.location for hop in final.redirect_chain] == ["https://x.test/a"]

    async def test_redirect_onto_queued_uri_in_parallel(self, fast_options):
        """Whichever finishes first, a shared redirect target gets one result."""
        fetcher = FakeFetcher({
            BASE: [page(BASE, body='<a href="/a">A</a><a href="/b">B</a>')],
            "https://x.test/a": [redirect("https://x.test/a", "/b")],
            "https://x.test/b": [page("https://x.test/b")],
        })
        runner = make_runner(fetcher, fast_options)

        results = await crawl(runner)

        assert fetcher.calls.count("https://x.test/b") == 1
        locations = [r.location for r in results]
        assert len(locations) == len(set(locations)) == 2

    async def test_readmitted_uri_is_fetched_once(self, fast_options):
        """Admitting a queued URI again should not fetch or record it twice."""
        fetcher = FakeFetcher({BASE: [page(BASE)]})
        runner = make_runner(fetcher, fast_options)
        runner.add_request(BASE)
        runner.add_request(BASE + "#top")

        assert runner.request_processor.pending_requests == 1

        results = await crawl(runner)

        assert fetcher.calls == [BASE]
        assert [(r.location, r.status) for r in results] == [(BASE, CrawlStatus.CRAWLED)]

    async def test_finished_uri_is_not_readmitted(self, fast_options):
        """A URI with a result should not be queued again."""
        fetcher = FakeFetcher({BASE: [page(BASE, status=404)]})
        runner = make_runner(fetcher, fast_options)

        await crawl(runner)
        runner.add_request(BASE)

        assert runner.request_processor.pending_requests == 0
        assert len(runner.crawled_uris) == 1
