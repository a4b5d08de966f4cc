# prompter/base_utils.py


import json
import logging
import re
from collections import OrderedDict

import commentjson
import yaml
from json_repair import repair_json

from prompter.google_helpers import PROJECT_ID, REGION
from prompter.llm_client import ChatLlmClient, LlmClient


logger = logging.getLogger("prompter_backend")


class BaseUtils():
    llm_timeout: float = 300
    llm_retries: int = 1

    # -----------------------
    # General Utils
    # -----------------------

    def color_print(self, text, color=None, end_value=None):
        COLOR_CODES = {
            'black': '30', 'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35',
            'cyan': '36', 'white': '37', 'bright_black': '90', 'bright_red': '91', 'bright_green': '92',
            'bright_yellow': '93', 'bright_blue': '94', 'bright_magenta': '95', 'bright_cyan': '96', 'bright_white': '97'
        }
        if color and color.lower() in COLOR_CODES:
            color_code = COLOR_CODES[color.lower()]
            start = f"\033[{color_code}m"
            end = "\033[0m"
            text = f"{start}{text}{end}"
        logger.info(str(text))
        return False

    def clean_triple_backticks(self, code) -> str:
        pattern = r'```[a-zA-Z]*\n?|```\n?'
        return re.sub(pattern, '', code)

    def sanitize_json_response(self, raw) -> str:
        """
        Best-effort recovery of a JSON object from model output.
        Strips code fences, then keeps the text from the first '{' to the last '}'.
        Never raises; empty input gives "{}".
        """
        if not raw:
            return "{}"
        cleaned = self.clean_triple_backticks(str(raw)).strip()
        start_brace = cleaned.find("{")
        end_brace = cleaned.rfind("}")
        if start_brace != -1 and end_brace != -1 and end_brace > start_brace:
            return cleaned[start_brace:end_brace + 1]
        return cleaned

    def load_fault_tolerant_json(self, json_str, ensure_ordered=False):
        """
        Attempts to load a JSON-like string with commentjson, then pyyaml, then json_repair.
        Raises if nothing yields a structured value.
        """
        def sanitize_json_string(input_str):
            """
            Escapes problematic characters inside string literals and drops comments,
            so that the text can be handed to the YAML parser.
            """

            def process_string_segment(match):
                content = match.group(1)
                # unescaped backslashes not part of an escape sequence
                content = re.sub(r'(?<!\\)\\(?![bfnrtu"\\/])', r'\\\\', content)
                # literal newlines
                content = re.sub(r'(?<!\\)\n', r'\\n', content)
                # unescaped double quotes
                content = re.sub(r'(?<!\\)"', r'\"', content)
                return f'"{content}"'

            def remove_comments(input_str):
                return re.sub(r'//.*?$|/\*.*?\*/', '', input_str, flags=re.MULTILINE | re.DOTALL)

            def sanitize_strings(input_str):
                return re.sub(r'(?<!\\)"((?:[^"\\]|\\.)*?)"', process_string_segment, input_str, flags=re.DOTALL)

            input_str = self.clean_triple_backticks(input_str)
            input_str = remove_comments(input_str)
            return sanitize_strings(input_str)

        def load_json(json_str, ensure_ordered):
            err, data = "", None
            try:
                if ensure_ordered:
                    data = commentjson.loads(self.clean_triple_backticks(json_str), object_pairs_hook=OrderedDict)
                else:
                    data = commentjson.loads(self.clean_triple_backticks(json_str))
                return data, ""
            except Exception as e:
                err = str(e)
                data = None
            try:
                data = yaml.safe_load(sanitize_json_string(json_str))
                if isinstance(data, str):
                    raise ValueError("load_fault_tolerant_json: YAML parsing produced a bare string.")
                return data, ""
            except Exception as e:
                err += "\n--\n" + str(e)
                data = None
            return data, err

        data, err = load_json(json_str or "", ensure_ordered)
        if data is not None:
            return data
        repaired_json_str = repair_json(json_str or "")
        r_data, r_err = load_json(repaired_json_str, ensure_ordered)
        if r_data is not None:
            return r_data
        raise ValueError(f"load_fault_tolerant_json: JSON parsing failed: {err or r_err}")

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value, indent=2)
        except TypeError:
            return str(value).strip()

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.

        it works differently from the standard "format" method as instead of looking for all the potential keys, looks only for the keys as passed in kwargs
        (so JSON braces inside a template survive untouched)
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            else:
                missing_keys.append(key)
                return match.group(0)

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.info(f"\033[93m\033[3mMissing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}\033[0m")
        return result

    # -----------------------
    # LLM base plumbing
    # -----------------------

    def _build_llms_for_model(self, model_name: str, timeout: float | None = None):
        """
        Build per-component LLM instances for the given model name.
        Falls back to None/None if creation fails.
        """
        if not timeout:
            timeout = self.llm_timeout
        try:
            llm = LlmClient(
                model_name=model_name,
                vertex_project=PROJECT_ID,
                vertex_region=REGION,
                timeout=timeout,
                retries=self.llm_retries,
            )
            chat_llm = ChatLlmClient(
                model_name=model_name,
                vertex_project=PROJECT_ID,
                vertex_region=REGION,
                timeout=timeout,
                retries=self.llm_retries,
            )
            return llm, chat_llm
        except Exception as e:
            logger.info(f"Warning: Could not initialize LLMs for {model_name}: {e}. ")
            return None, None
