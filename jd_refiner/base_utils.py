# jd_refiner/base_utils.py

import logging
import re

logger = logging.getLogger("jd_refiner")


class BaseUtils():

    def clean_triple_backticks(self, code) -> str:
        # only a fence wrapping the whole reply; backticks inside values stay
        match = re.match(r'^\s*```[a-zA-Z]*\n?(.*?)\n?```\s*$', code, re.S)
        return match.group(1) if match else code

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.

        It works differently from the standard "format" method: instead of looking for all the
        potential keys it only looks for the keys passed in kwargs, so literal JSON braces in
        a prompt survive untouched.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            else:
                missing_keys.append(key)
                return match.group(0)  # Leave the placeholder unchanged

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.debug(f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}")
        return result
