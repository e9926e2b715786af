import static_mirror as sm
from conftest import BASE, FakeSession

PAGE = f"{BASE}/articulo-demo/"


def parse(html):
    return sm.bs4_parse(html)


def test_stylesheet_without_internal_refs_is_unchanged(make_cache):
    session = FakeSession()
    cache = make_cache(session)
    css = (
        "/* theme overrides */\n"
        "a{background:url( 'https://cdn.example.com/a.png' )}\n"
        'b{background:url("data:image/png;base64,AAAA")}\n'
        "c{behavior:url(#default)}\n"
        "@import 'https://fonts.example.net/css?family=Roboto';\n"
    )
    assert sm.rewrite_css_text(css, PAGE, cache) == css
    assert session.calls == []


def test_inline_css_uses_public_paths(make_cache):
    session = FakeSession()
    cache = make_cache(session)
    css = (
        "body{background:url('/wp-content/bg.png')}"
        'h1{background:url("../img/h.png")}'
        "p{background:url(i.png)}"
        '@import "/wp-content/extra.css";'
        "@import url('/wp-content/more.css');"
    )
    out = sm.rewrite_css_text(css, PAGE, cache)
    assert out == (
        "body{background:url(/remote-assets/wp-content/bg.png)}"
        "h1{background:url(/remote-assets/img/h.png)}"
        "p{background:url(/remote-assets/articulo-demo/i.png)}"
        "@import url(/remote-assets/wp-content/extra.css);"
        "@import url(/remote-assets/wp-content/more.css);"
    )
    assert session.count(f"{BASE}/wp-content/bg.png") == 1
    assert session.count(f"{BASE}/wp-content/extra.css") == 1


def test_srcset_rewrites_internal_candidates_only(make_cache):
    cache = make_cache(FakeSession())
    value = (
        "/wp-content/a-300.png 300w, https://cdn.example.com/b.png 600w,"
        " https://example.org/wp-content/c.png 2x"
    )
    assert sm.rewrite_srcset(value, PAGE, cache) == (
        "/remote-assets/wp-content/a-300.png 300w, https://cdn.example.com/b.png 600w, "
        "/remote-assets/wp-content/c.png 2x"
    )


def test_dom_rewrite(make_cache):
    session = FakeSession()
    cache = make_cache(session)
    soup = parse(
        """<html><head>
        <link rel="stylesheet" href="/wp-content/themes/t/style.css?ver=6.4">
        <link rel="canonical" href="https://example.org/articulo-demo">
        <link rel="preconnect" href="https://fonts.example.net">
        <script src="/wp-includes/js/jquery.js"></script>
        <style>body{background:url(/wp-content/bg.jpg)}</style>
        </head><body>
        <img src="/wp-content/x.png" srcset="/wp-content/x-2.png 2x">
        <img src="https://cdn.example.com/logo.png">
        <a id="route" href="/en/contacto?x=1#form">Contacto</a>
        <a id="pdf" href="/wp-content/uploads/doc.pdf">PDF</a>
        <a id="ext" href="https://other.org/page">Other</a>
        <a id="mail" href="mailto:info@example.org">Mail</a>
        <a id="frag" href="#top">Top</a>
        <iframe src="javascript:void(0)"></iframe>
        </body></html>"""
    )

    sm.rewrite_dom_assets(soup, PAGE, cache)

    links = soup.find_all("link")
    assert links[0]["href"].startswith("/remote-assets/wp-content/themes/t/style.")
    assert links[0]["href"].endswith(".css")
    assert links[1]["href"] == "https://example.org/articulo-demo"
    assert links[2]["href"] == "https://fonts.example.net"
    assert soup.script["src"] == "/remote-assets/wp-includes/js/jquery.js"
    assert soup.style.string == "body{background:url(/remote-assets/wp-content/bg.jpg)}"
    imgs = soup.find_all("img")
    assert imgs[0]["src"] == "/remote-assets/wp-content/x.png"
    assert imgs[0]["srcset"] == "/remote-assets/wp-content/x-2.png 2x"
    assert imgs[1]["src"] == "https://cdn.example.com/logo.png"
    assert soup.find(id="route")["href"] == "/en/contacto/?x=1#form"
    assert soup.find(id="pdf")["href"] == "/remote-assets/wp-content/uploads/doc.pdf"
    assert soup.find(id="ext")["href"] == "https://other.org/page"
    assert soup.find(id="mail")["href"] == "mailto:info@example.org"
    assert soup.find(id="frag")["href"] == "#top"
    assert session.count(f"{BASE}/articulo-demo") == 0
    assert session.count(f"{BASE}/en/contacto?x=1") == 0


def test_route_hrefs_get_base_path(make_cache):
    cache = make_cache(FakeSession(), base_path="sub/")
    soup = parse('<a href="/">Home</a><a href="/quienes-somos">About</a>')
    sm.rewrite_dom_assets(soup, PAGE, cache)
    assert [a["href"] for a in soup.find_all("a")] == ["/sub/", "/sub/quienes-somos/"]


def test_dom_rewrite_is_idempotent(make_cache):
    html = """<html><head>
    <link rel="stylesheet" href="/wp-content/style.css?ver=1">
    <style>p{background:url('/wp-content/p.png')}</style>
    </head><body>
    <img src="/wp-content/x.png" srcset="/wp-content/x.png 1x, /wp-content/x2.png 2x">
    <a href="/articulo-demo?p=2#c">x</a>
    </body></html>"""
    soup = parse(html)
    sm.rewrite_dom_assets(soup, PAGE, make_cache(FakeSession()))
    once = str(soup)

    session = FakeSession()
    again = parse(once)
    sm.rewrite_dom_assets(again, PAGE, make_cache(session))

    assert session.calls == []
    assert again.img["src"] == soup.img["src"]
    assert again.img["srcset"] == soup.img["srcset"]
    assert again.a["href"] == "/articulo-demo/?p=2#c"
    assert again.link["href"] == soup.link["href"]
    assert again.style.string == soup.style.string


def test_idempotent_with_base_path(make_cache):
    soup = parse('<img src="/wp-content/x.png"><a href="/contacto">c</a>')
    sm.rewrite_dom_assets(soup, PAGE, make_cache(FakeSession(), base_path="/sub"))
    assert soup.img["src"] == "/sub/remote-assets/wp-content/x.png"
    assert soup.a["href"] == "/sub/contacto/"

    session = FakeSession()
    again = parse(str(soup))
    sm.rewrite_dom_assets(again, PAGE, make_cache(session, base_path="/sub"))
    assert session.calls == []
    assert again.a["href"] == "/sub/contacto/"


def test_fragments_share_one_download_and_are_kept(make_cache, settings):
    sprite = f"{BASE}/wp-content/sprite.svg"
    session = FakeSession({sprite: (200, b"<svg/>", {"Content-Type": "image/svg+xml"})})
    cache = make_cache(session)
    css = "a{background:url(/wp-content/sprite.svg#a)}b{background:url(sprite.svg#b)}"
    out = sm.rewrite_css_text(css, f"{BASE}/wp-content/", cache)
    assert out == (
        "a{background:url(/remote-assets/wp-content/sprite.svg#a)}"
        "b{background:url(/remote-assets/wp-content/sprite.svg#b)}"
    )

    soup = parse('<img src="/wp-content/sprite.svg#c">')
    sm.rewrite_dom_assets(soup, PAGE, cache)
    assert soup.img["src"] == "/remote-assets/wp-content/sprite.svg#c"

    assert session.count(sprite) == 1
    assert len(cache) == 1
    assert (settings.asset_root / "wp-content" / "sprite.svg").read_bytes() == b"<svg/>"


def test_fragment_kept_on_stylesheet_relative_path(make_cache, settings):
    css_url = f"{BASE}/wp-content/themes/t/style.css"
    sprite = f"{BASE}/wp-content/sprite.svg"
    session = FakeSession(
        {
            css_url: (200, "i{background:url(../../sprite.svg#icon)}", {}),
            sprite: (200, b"<svg/>", {}),
        }
    )
    cache = make_cache(session)
    entry = cache.resolve(css_url)
    assert entry.fs_path.read_text(encoding="utf-8") == (
        "i{background:url(../../sprite.svg#icon)}"
    )
    assert session.count(sprite) == 1
