"""
Task parser - tasks and nested sub-tasks from WhatsApp messages
"""

import re
from typing import List, Optional, Tuple

from src.core.extraction import ParseContext, ParserStrategy
from src.core.models import ActionKind, TaskDraft, TaskPriority
from src.core.time_parser import find_date


BULLET = re.compile(r'^(?:[-*•·]|\d{1,2}[.)])\s+')
CHECKBOX = re.compile(r'^\[(?P<mark>[ xX✓✔]?)\]\s*')
HASHTAG = re.compile(r'#(\w+)')
CLAUSE_BREAK = re.compile(r'[.!?;\n]|:\s*$|:\s+(?=[A-ZÁÉÍÓÚÑ])')

MAX_TITLE_LENGTH = 50


class TaskParser(ParserStrategy):
    """Extract a task, or a parent task with one sub-task per indented line"""

    action_kind = ActionKind.CREATE_TASK

    def __init__(self, max_title_length: int = MAX_TITLE_LENGTH):
        super().__init__()
        self.max_title_length = max_title_length

        # Priority keywords for automatic detection (es/en)
        self.priority_keywords = {
            TaskPriority.HIGH: [
                'urgente', 'urgent', 'asap', 'importante', 'important', 'prioridad alta',
                'alta prioridad', 'high priority', 'crítico', 'critico', 'critical',
                'cuanto antes', 'lo antes posible', 'inmediato', 'immediately',
            ],
            TaskPriority.LOW: [
                'cuando puedas', 'sin prisa', 'no urgente', 'no es urgente', 'baja prioridad', 'prioridad baja',
                'low priority', 'eventually', 'someday', 'algún día', 'opcional', 'optional',
            ],
        }

        self.tag_keywords = {
            'trabajo': ['trabajo', 'oficina', 'cliente', 'junta', 'reunión', 'proyecto',
                        'work', 'office', 'client', 'meeting', 'project'],
            'personal': ['casa', 'familia', 'personal', 'hogar', 'home', 'family'],
        }

    def parse(self, content: str, context: ParseContext) -> List[TaskDraft]:
        content = (content or "").strip('\n')
        if not content.strip():
            return []

        structure = self._split_structure(content)
        if structure is None:
            draft = self._build_draft(content, context, source=content.strip())
            return [draft] if draft else []

        drafts: List[TaskDraft] = []
        for parent_text, children in structure:
            parent = self._build_draft(parent_text, context, source=parent_text)
            if parent is None:
                continue
            parent_index = len(drafts)
            drafts.append(parent)

            for child_text in children:
                child = self._build_draft(child_text, context, source=child_text, parent=parent)
                if child is None:
                    continue
                child.parent_ref = parent_index
                drafts.append(child)

        self.logger.debug(f"Task parser produced {len(drafts)} drafts from nested structure")
        return drafts

    def _split_structure(self, content: str) -> Optional[List[Tuple[str, List[str]]]]:
        """[(parent line, [child lines])] or None when the message is not nested.

        Nested means indented lines under a less indented line, or a plain
        header line followed only by bullet lines.
        """
        lines = [line.expandtabs(4) for line in content.splitlines() if line.strip()]
        if len(lines) < 2:
            return None

        indents = [len(line) - len(line.lstrip(' ')) for line in lines]
        top = min(indents)

        if any(indent > top for indent in indents):
            groups: List[Tuple[str, List[str]]] = []
            for line, indent in zip(lines, indents):
                if indent == top or not groups:
                    groups.append((line.strip(), []))
                else:
                    groups[-1][1].append(line.strip())
            if any(children for _, children in groups):
                return groups
            return None

        header, rest = lines[0].strip(), [line.strip() for line in lines[1:]]
        if not BULLET.match(header) and all(BULLET.match(line) or CHECKBOX.match(line) for line in rest):
            return [(header, rest)]
        return None

    def _build_draft(self, text: str, context: ParseContext, source: str,
                     parent: Optional[TaskDraft] = None) -> Optional[TaskDraft]:
        cleaned, completed = self._strip_markers(text)
        title = self._extract_title(cleaned)
        if not title:
            return None

        priority, matched_priority = self._detect_priority(cleaned)
        priority_source = 'keyword' if matched_priority else 'default'
        if not matched_priority and parent is not None:
            priority = parent.priority
            priority_source = parent.metadata.get('priority_source', 'default')

        due = find_date(cleaned, context.sent_at.date(), context.locale.day_first)
        due_date = due.value if due else (parent.due_date if parent is not None else None)

        tags = self._extract_tags(cleaned)
        if parent is not None:
            tags = list(dict.fromkeys(parent.tags + tags))

        confidence = 0.7
        if matched_priority:
            confidence += 0.1
        if due is not None:
            confidence += 0.1
        if len(title) < 3:
            confidence = 0.3

        metadata = {'priority_source': priority_source}
        if completed:
            metadata['completed'] = True

        return TaskDraft(
            title=title,
            priority=priority,
            due_date=due_date,
            tags=tags,
            description=cleaned if parent is not None else text.strip(),
            confidence=confidence,
            source_span=source,
            metadata=metadata,
        )

    def _strip_markers(self, text: str) -> Tuple[str, bool]:
        text = BULLET.sub('', text.strip())
        completed = False
        checkbox = CHECKBOX.match(text)
        if checkbox:
            completed = checkbox.group('mark') not in ('', ' ')
            text = text[checkbox.end():]
        return text.strip(), completed

    def _extract_title(self, text: str) -> str:
        first_clause = CLAUSE_BREAK.split(text, maxsplit=1)[0]
        title = HASHTAG.sub('', first_clause)
        title = re.sub(r'\s{2,}', ' ', title).strip(" ,:-")
        if len(title) > self.max_title_length:
            cut = title[:self.max_title_length].rsplit(' ', 1)[0]
            title = cut.rstrip(" ,:-") + "..."
        return title

    def _detect_priority(self, text: str) -> Tuple[TaskPriority, bool]:
        lowered = text.lower()
        for priority, keywords in self.priority_keywords.items():
            if any(re.search(rf'(?<!\w){re.escape(keyword)}(?!\w)', lowered) for keyword in keywords):
                # "no urgente" is a low-priority phrase, not an urgent one
                if priority == TaskPriority.HIGH and re.search(r'\bno\s+(?:es\s+)?urgente\b', lowered):
                    continue
                return priority, True
        return TaskPriority.MEDIUM, False

    def _extract_tags(self, text: str) -> List[str]:
        tags = [tag.lower() for tag in HASHTAG.findall(text)]
        lowered = text.lower()
        for tag, keywords in self.tag_keywords.items():
            if any(re.search(rf'(?<!\w){re.escape(keyword)}(?!\w)', lowered) for keyword in keywords):
                tags.append(tag)
        return list(dict.fromkeys(tags))
