"""Post-processing of fetched messages."""

from contracts import Attachment, Message, StorageOutcome
from src.mailbox_mcp.postprocess import rewrite_inline_links, strip_html_tags


def make_message(html, attachments=()):
    return Message(
        uid=1,
        date="",
        subject="",
        from_name="",
        from_address="",
        to={},
        to_string="",
        cc={},
        reply_to={},
        text_plain="",
        text_html=html,
        attachments=list(attachments),
    )


LOGO = Attachment(
    id="logo@example",
    filename="logo.png",
    subtype="png",
    mime_type="image/png",
    file_path="/store/1_logo@example_logo.png",
    outcome=StorageOutcome.STORED,
)


class TestInlineLinks:

    def test_cid_reference_rewritten(self):
        message = make_message('<p><img alt="x" src="cid:logo@example"></p>', [LOGO])

        rewritten = rewrite_inline_links(message, "https://files.example/")

        assert 'src="https://files.example/1_logo@example_logo.png"' in rewritten.text_html
        assert "cid:" not in rewritten.text_html
        assert message.text_html.count("cid:") == 1

    def test_unstored_attachment_left_alone(self):
        unstored = Attachment(id="logo@example", filename="logo.png", subtype="png", mime_type="image/png")
        message = make_message('<img src="cid:logo@example">', [unstored])

        assert rewrite_inline_links(message, "/files/").text_html == '<img src="cid:logo@example">'

    def test_other_identities_untouched(self):
        message = make_message('<img src="cid:other@example">', [LOGO])

        assert "cid:other@example" in rewrite_inline_links(message, "/files/").text_html


class TestStripTags:

    def test_default_tags_removed(self):
        html = '\r\n<html><head><meta charset="utf-8"></head><body><p>Hi</p></body></html>\n'

        assert strip_html_tags(make_message(html)).text_html == "<p>Hi</p>"

    def test_custom_tags(self):
        assert strip_html_tags(make_message("<div><p>Hi</p></div>"), ["div"]).text_html == "<p>Hi</p>"

    def test_empty_html(self):
        message = make_message("")
        assert strip_html_tags(message) is message
