"""
SQL injection / XSS 패턴 탐지

정규식 시그니처 목록(블랙리스트)으로 위험한 입력을 탐지합니다.
파서가 아니므로 난독화된 payload는 놓칠 수 있고, "Drop Table Tiramisu" 같은
정상 텍스트가 차단될 수 있습니다. 패턴 완화로 이를 우회하지 않습니다.

규칙을 추가/폐기할 때는 RULESET_VERSION을 올립니다.
"""

import html
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

RULESET_VERSION = "2025.1"

SQL_INJECTION = "sql-injection"
XSS = "xss"
CATEGORIES = (SQL_INJECTION, XSS)


@dataclass(frozen=True)
class ThreatPattern:
    """탐지 규칙 1개 (이름, 분류, 정규식, 매칭 예시)"""
    name: str
    category: str
    pattern: str
    example: str
    regex: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "regex", re.compile(self.pattern, re.IGNORECASE))

    def matches(self, text: str) -> bool:
        return self.regex.search(text) is not None


# 평가 순서 = 목록 순서 (첫 매칭에서 종료)
SQL_INJECTION_RULES: List[ThreatPattern] = [
    ThreatPattern("union-select", SQL_INJECTION, r"\bunion\s+(all\s+)?select", "1 UNION SELECT password FROM users"),
    ThreatPattern("drop-table", SQL_INJECTION, r"\bdrop\s+table", "x'; DROP TABLE recipes"),
    ThreatPattern("insert-into", SQL_INJECTION, r"\binsert\s+into", "INSERT INTO users VALUES (1)"),
    ThreatPattern("delete-from", SQL_INJECTION, r"\bdelete\s+from", "DELETE FROM recipes"),
    ThreatPattern("update-set", SQL_INJECTION, r"\bupdate\s+.+\bset", "UPDATE users SET role='admin'"),
    ThreatPattern("exec-call", SQL_INJECTION, r"\bexec\s*\(", "exec(xp_cmdshell)"),
    ThreatPattern("execute-call", SQL_INJECTION, r"\bexecute\s*\(", "EXECUTE (sp_who)"),
    ThreatPattern("select-from", SQL_INJECTION, r"\bselect\s+.+\bfrom", "SELECT * FROM users"),
    ThreatPattern("stacked-drop", SQL_INJECTION, r";\s*drop\s+table", ";drop table users"),
    ThreatPattern("stacked-delete", SQL_INJECTION, r";\s*delete\s+from", "1;delete from tags"),
    ThreatPattern("quote-comment-dash", SQL_INJECTION, r"'.*--", "admin'--"),
    ThreatPattern("quote-comment-hash", SQL_INJECTION, r"'.*#", "admin' #"),
    ThreatPattern("block-comment", SQL_INJECTION, r"/\*.*\*/", "1/**/OR/**/1"),
    ThreatPattern("or-tautology", SQL_INJECTION, r"\bor\s+1\s*=\s*1", "x OR 1=1"),
    ThreatPattern("and-tautology", SQL_INJECTION, r"\band\s+1\s*=\s*1", "x AND 1 = 1"),
    ThreatPattern("or-quoted-tautology", SQL_INJECTION, r"\bor\s+'.*'\s*=\s*'.*'", "x' or 'a'='a'"),
    ThreatPattern("and-quoted-tautology", SQL_INJECTION, r"\band\s+'.*'\s*=\s*'.*'", "x' and 'b'='b'"),
]

XSS_RULES: List[ThreatPattern] = [
    ThreatPattern("script-block", XSS, r"<script[^>]*>.*?</script>", "<script>alert(1)</script>"),
    ThreatPattern("script-open", XSS, r"<script[^>]*>", "<SCRIPT src=//evil.example>"),
    ThreatPattern("script-close", XSS, r"</script>", "</script>"),
    ThreatPattern("javascript-uri", XSS, r"javascript:", "javascript:alert(1)"),
    ThreatPattern("vbscript-uri", XSS, r"vbscript:", "VBScript:msgbox(1)"),
    ThreatPattern("onload-handler", XSS, r"onload\s*=", "<body onload=alert(1)>"),
    ThreatPattern("onerror-handler", XSS, r"onerror\s*=", "<img src=x onerror = alert(1)>"),
    ThreatPattern("onclick-handler", XSS, r"onclick\s*=", "<a onclick=steal()>"),
    ThreatPattern("onmouseover-handler", XSS, r"onmouseover\s*=", "<b onmouseover=go()>"),
    ThreatPattern("iframe-tag", XSS, r"<iframe[^>]*>", "<iframe src=//evil.example>"),
    ThreatPattern("object-tag", XSS, r"<object[^>]*>", "<object data=x>"),
    ThreatPattern("embed-tag", XSS, r"<embed[^>]*>", "<embed src=x.swf>"),
    ThreatPattern("link-tag", XSS, r"<link[^>]*>", "<link rel=stylesheet href=//evil.example>"),
    ThreatPattern("meta-tag", XSS, r"<meta[^>]*>", "<meta http-equiv=refresh content=0>"),
]


class ThreatDetector:
    """
    분류별 규칙 집합을 가진 패턴 탐지기

    규칙 집합은 생성 시 주입할 수 있습니다 (기본값: 위의 규칙 테이블).
    탐지기는 상태가 없으므로 여러 요청에서 공유해도 안전합니다.
    """

    def __init__(self, rules: Optional[Dict[str, Sequence[ThreatPattern]]] = None):
        if rules is None:
            rules = {SQL_INJECTION: SQL_INJECTION_RULES, XSS: XSS_RULES}
        self.rules: Dict[str, List[ThreatPattern]] = {
            category: list(patterns) for category, patterns in rules.items()
        }

    def first_match(self, text: str, category: Optional[str] = None) -> Optional[ThreatPattern]:
        """
        처음 매칭되는 규칙 반환

        Args:
            text: 검사할 문자열
            category: 검사할 분류 (None이면 SQL injection → XSS 순서로 모두 검사)

        Returns:
            매칭된 ThreatPattern, 없으면 None

        Raises:
            KeyError: 알 수 없는 분류
        """
        if not text:
            return None

        categories = [category] if category else list(self.rules)
        for name in categories:
            for rule in self.rules[name]:
                if rule.matches(text):
                    return rule
        return None

    def scan(self, text: str, category: str) -> bool:
        """위험한 입력이면 True"""
        return self.first_match(text, category) is not None

    def contains_sql_injection(self, text: str) -> bool:
        return self.scan(text, SQL_INJECTION)

    def contains_xss(self, text: str) -> bool:
        return self.scan(text, XSS)

    def is_dangerous(self, text: str) -> bool:
        return self.first_match(text) is not None


default_detector = ThreatDetector()


def sanitize_input(user_input: str) -> str:
    """
    기본 sanitization

    Null byte 제거, 앞뒤 공백 제거 후 HTML 이스케이프
    """
    sanitized = user_input.replace("\x00", "")
    return html.escape(sanitized.strip())
