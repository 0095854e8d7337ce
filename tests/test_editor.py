import unittest

from s3_explorer.editor import EditorBuffer, EditorController, ViewerKind, build_preview, mime_type_for, viewer_for
from s3_explorer.errors import ApiError


class FakeApi:
    def __init__(self):
        self.objects = {}
        self.put_calls = []
        self.fetches = []

    def get_object_text(self, bucket, key):
        self.fetches.append(("text", key))
        return self.objects[key]

    def get_object_base64(self, bucket, key):
        self.fetches.append(("base64", key))
        return self.objects[key]

    def put_object(self, bucket, key, body, *, is_base64=False):
        self.put_calls.append((bucket, key, body, is_base64))


class ViewerTests(unittest.TestCase):
    def test_viewer_dispatch_by_extension(self):
        cases = {
            "photo.JPG": ViewerKind.IMAGE,
            "icon.svg": ViewerKind.IMAGE,
            "data.tsv": ViewerKind.CSV,
            "config.json": ViewerKind.JSON,
            "README.markdown": ViewerKind.MARKDOWN,
            "report.pdf": ViewerKind.PDF,
            "notes.txt": ViewerKind.TEXT,
            "Makefile": ViewerKind.TEXT,
        }
        for name, expected in cases.items():
            with self.subTest(name=name):
                self.assertEqual(expected, viewer_for(name))

    def test_mime_types(self):
        self.assertEqual("image/jpeg", mime_type_for("a.jpg"))
        self.assertEqual("image/svg+xml", mime_type_for("a.svg"))
        self.assertEqual("application/pdf", mime_type_for("a.pdf"))

    def test_csv_preview_detects_header(self):
        preview = build_preview("people.csv", "name,age\nada,36\nalan,41")

        self.assertEqual(["name", "age"], preview.header)
        self.assertEqual([["ada", "36"], ["alan", "41"]], preview.rows)

    def test_numeric_first_row_gets_column_letters(self):
        preview = build_preview("numbers.tsv", "1\t2\t3\n4\t5\t6")

        self.assertEqual(["A", "B", "C"], preview.header)
        self.assertEqual(2, len(preview.rows))

    def test_json_preview_reports_parse_error(self):
        self.assertEqual({"a": 1}, build_preview("a.json", '{"a": 1}').data)
        self.assertTrue(build_preview("a.json", "{broken").error.startswith("Invalid JSON"))

    def test_image_preview_is_data_url(self):
        preview = build_preview("a.png", "AAE=")

        self.assertEqual("data:image/png;base64,AAE=", preview.data_url)


class EditorControllerTests(unittest.TestCase):
    def setUp(self):
        self.api = FakeApi()
        self.answers = []
        self.editor = EditorController(self.api, prompt=lambda message: self.answers.pop(0), upload_limit_bytes=16)

    def test_dirty_tracking_and_save_resets_baseline(self):
        self.api.objects["notes/todo.txt"] = "one"
        self.editor.open("docs", "notes/todo.txt")
        self.assertFalse(self.editor.dirty)

        self.editor.edit("one two")
        self.assertTrue(self.editor.dirty)

        key = self.editor.save()

        self.assertEqual("notes/todo.txt", key)
        self.assertFalse(self.editor.dirty)
        self.assertEqual([("docs", "notes/todo.txt", "one two", False)], self.api.put_calls)

    def test_binary_files_open_as_base64_and_save_back(self):
        self.api.objects["a.png"] = "AAE="
        self.editor.open("docs", "a.png")
        self.editor.edit("AAI=")

        self.editor.save()

        self.assertEqual([("base64", "a.png")], self.api.fetches)
        self.assertEqual([("docs", "a.png", "AAI=", True)], self.api.put_calls)

    def test_new_file_prompts_for_name_under_prefix(self):
        self.editor.start_new_file("docs", "reports/")
        self.editor.edit("hello")
        self.answers.append("today.md")

        key = self.editor.save()

        self.assertEqual("reports/today.md", key)
        self.assertFalse(self.editor.buffer.is_new_file)
        self.assertEqual("reports/today.md", self.editor.buffer.selected_file)

    def test_cancelled_name_prompt_keeps_buffer(self):
        self.editor.start_new_file("docs", "")
        self.editor.edit("hello")
        self.answers.append("")

        self.assertIsNone(self.editor.save())
        self.assertTrue(self.editor.dirty)
        self.assertEqual([], self.api.put_calls)

    def test_new_file_over_upload_limit_is_refused(self):
        self.editor.start_new_file("docs", "")
        self.editor.edit("x" * 17)
        self.answers.append("big.txt")

        with self.assertRaises(ApiError):
            self.editor.save()
        self.assertEqual([], self.api.put_calls)

    def test_discard_restores_original(self):
        self.api.objects["a.txt"] = "v1"
        self.editor.open("docs", "a.txt")
        self.editor.edit("v2")

        self.editor.discard()

        self.assertFalse(self.editor.dirty)
        self.assertEqual("v1", self.editor.buffer.edited_content)

    def test_buffer_dirty_property(self):
        self.assertFalse(EditorBuffer().dirty)
        self.assertTrue(EditorBuffer(original_content="a", edited_content="b").dirty)


if __name__ == "__main__":
    unittest.main()
