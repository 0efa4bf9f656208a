"""Brand consistency modules."""

import re

from pydantic import Field

from ..modules import BaseModule

DEFAULT_BANNED_TERMS = ["cheap", "guaranteed results", "best in the world"]
DEFAULT_TERMINOLOGY = {"web site": "website", "e-mail": "email", "log-in": "login"}

SEVERITY_PENALTY = {"high": 3.0, "medium": 1.5, "low": 0.5}


def _find(term: str, text: str) -> bool:
    return re.search(rf"\b{re.escape(term)}\b", text, flags=re.IGNORECASE) is not None


class ConsistencyChecker(BaseModule):
    """Scores content against brand guidelines (0 to 10)."""

    class Options(BaseModule.Options):
        banned_terms: list[str] = Field(default_factory=lambda: list(DEFAULT_BANNED_TERMS))
        max_title_length: int = Field(default=70, ge=10)
        min_body_length: int = Field(default=40, ge=0)

    async def check(self, content: dict, guidelines: dict | None = None) -> dict:
        guidelines = guidelines or {}
        banned = guidelines.get("banned_terms", self.options.banned_terms)
        title = content.get("title", "")
        body = content.get("body", "")
        issues = []

        for term in banned:
            if _find(term, f"{title}\n{body}"):
                issues.append(
                    {"type": "banned_term", "severity": "high", "term": term, "suggestion": "", "message": f"Avoid '{term}'"}
                )
        if len(title) > self.options.max_title_length:
            issues.append(
                {"type": "title_length", "severity": "low", "message": f"Title exceeds {self.options.max_title_length} characters"}
            )
        if len(body) < self.options.min_body_length:
            issues.append({"type": "body_length", "severity": "medium", "message": "Body is too short"})

        return {"issues": issues}


class TerminologyChecker(BaseModule):
    class Options(BaseModule.Options):
        terminology: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_TERMINOLOGY))

    async def check(self, text: str, guidelines: dict | None = None) -> list[dict]:
        terminology = (guidelines or {}).get("terminology", self.options.terminology)
        return [
            {
                "type": "terminology",
                "severity": "medium",
                "term": wrong,
                "suggestion": preferred,
                "message": f"Use '{preferred}' instead of '{wrong}'",
            }
            for wrong, preferred in terminology.items()
            if _find(wrong, text)
        ]


def score(issues: list[dict]) -> float:
    penalty = sum(SEVERITY_PENALTY.get(issue.get("severity"), 0.5) for issue in issues)
    return max(0.0, 10.0 - penalty)


MODULES = {
    "consistency_checker": ConsistencyChecker,
    "terminology_checker": TerminologyChecker,
}
