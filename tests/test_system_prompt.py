import unittest

from cashflow_assistant.system_prompt import build_system_prompt


class SystemPromptTests(unittest.TestCase):
    def test_paginated_results_point_the_user_at_the_next_page(self) -> None:
        prompt = build_system_prompt()
        self.assertIn("suggest the user ask for the next page", " ".join(prompt.split()))
        self.assertNotIn("fetch further pages", prompt)

    def test_current_date_is_appended(self) -> None:
        self.assertTrue(build_system_prompt("2024-05-01").endswith("Today's date is 2024-05-01."))
        self.assertNotIn("Today's date", build_system_prompt())


if __name__ == "__main__":
    unittest.main()
