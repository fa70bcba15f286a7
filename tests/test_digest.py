import json
import pytest
from unittest.mock import patch

from valuation_agent.agents.digest import (
    extract_key_info,
    DIGEST_FAILURE,
    MAX_STRUCTURE_CHARS,
    MAX_UNIQUE_CLASSES,
)


SAMPLE_PAGE = """
<html>
  <head>
    <title>  Centered Demo  </title>
    <meta name="description" content="A page with a centered div">
    <style>.box { margin: auto; }</style>
  </head>
  <body>
    <!-- build marker -->
    <h1>Welcome</h1>
    <h1>Second <em>title</em></h1>
    <h2>Section A</h2>
    <div class="container flex">
      <div class="box flex">Centered</div>
      <img src="a.png"><img src="b.png">
      <a href="/one">one</a>
      <form><input name="q"></form>
    </div>
    <script>console.log("hidden")</script>
  </body>
</html>
"""


def _digest(html):
    return json.loads(extract_key_info(html))


class TestDigestFields:
    """Test the fields summarised from a page"""

    def test_title_and_description(self):
        """Title is trimmed and description comes from the meta tag"""
        d = _digest(SAMPLE_PAGE)
        assert d["title"] == "Centered Demo"
        assert d["description"] == "A page with a centered div"

    def test_description_name_case_insensitive(self):
        html = '<html><head><meta name="Description" content="Mixed case"></head><body></body></html>'
        assert _digest(html)["description"] == "Mixed case"

    def test_missing_title_and_description(self):
        """A fragment gets the placeholder title and description"""
        d = _digest("<div>just a fragment</div>")
        assert d["title"] == "No title found"
        assert d["description"] == "No description found"

    def test_heading_counts_and_samples(self):
        """Headings are counted and sampled as text, h1s first"""
        d = _digest(SAMPLE_PAGE)
        assert d["headings"]["h1"] == 2
        assert d["headings"]["h2"] == 1
        assert d["headings"]["samples"] == ["Welcome", "Second title", "Section A"]

    def test_heading_samples_are_capped(self):
        """At most three samples per heading level"""
        html = "<body>" + "".join(f"<h1>H{i}</h1>" for i in range(5)) + "<h2>S</h2></body>"
        d = _digest(html)
        assert d["headings"]["h1"] == 5
        assert d["headings"]["samples"] == ["H0", "H1", "H2", "S"]

    def test_element_counts(self):
        d = _digest(SAMPLE_PAGE)
        assert d["elements"] == {"forms": 1, "images": 2, "links": 1}

    def test_unique_classes_in_document_order(self):
        """Class names are de-duplicated, keeping first-seen order"""
        d = _digest(SAMPLE_PAGE)
        assert d["styling"]["uniqueClasses"] == ["container", "flex", "box"]

    def test_unique_classes_capped(self):
        html = "<body>" + "".join(f'<span class="c{i}"></span>' for i in range(30)) + "</body>"
        d = _digest(html)
        classes = d["styling"]["uniqueClasses"]
        assert len(classes) == MAX_UNIQUE_CLASSES
        assert classes[0] == "c0"


class TestDigestStructure:
    """Test the stripped markup skeleton"""

    def test_scripts_styles_comments_removed(self):
        structure = _digest(SAMPLE_PAGE)["structure"]
        assert "console.log" not in structure
        assert "margin: auto" not in structure
        assert "build marker" not in structure
        assert '<div class="box flex">Centered</div>' in structure

    def test_whitespace_between_tags_collapsed(self):
        structure = _digest(SAMPLE_PAGE)["structure"]
        assert "<h1>Welcome</h1><h1>Second <em>title</em></h1><h2>Section A</h2><div" in structure

    def test_structure_truncated(self):
        html = "<body>" + "<p>filler text</p>" * 1000 + "</body>"
        structure = _digest(html)["structure"]
        assert len(structure) == MAX_STRUCTURE_CHARS


class TestDigestOutput:
    """Test the serialised result"""

    def test_pretty_printed_json(self):
        """The digest is JSON indented by two spaces"""
        out = extract_key_info(SAMPLE_PAGE)
        assert out.startswith('{\n  "title"')

    def test_empty_input(self):
        d = _digest("")
        assert d["title"] == "No title found"
        assert d["elements"] == {"forms": 0, "images": 0, "links": 0}

    def test_internal_failure_returns_sentinel(self):
        """Any error while digesting yields the failure sentinel instead of raising"""
        with patch("valuation_agent.agents.digest._build_digest", side_effect=RuntimeError("boom")):
            assert extract_key_info(SAMPLE_PAGE) == DIGEST_FAILURE
