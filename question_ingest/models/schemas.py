import re
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# --- Basic Enums ---
class ExpertSubject(str, Enum):
    ENGLISH = "english"
    MATH = "math"
    CHINESE = "chinese"
    SOCIAL = "social"
    SCIENCE = "science"


class SubjectHint(str, Enum):
    ENGLISH = "english"
    MATH = "math"
    CHINESE = "chinese"
    SOCIAL = "social"
    SCIENCE = "science"
    UNKNOWN = "unknown"


class GuardSubject(str, Enum):
    MATH = "math"
    NONE = "none"


class QuestionSetKind(str, Enum):
    READING = "reading"
    CLOZE = "cloze"
    BANKED_CLOZE = "banked_cloze"
    SENTENCE_INSERTION = "sentence_insertion"
    UNKNOWN = "unknown"


class ConservativeQuestionType(str, Enum):
    E1_VOCAB = "E1_VOCAB"
    E2_CLOZE = "E2_CLOZE"
    E3_FILL_IN_CLOZE = "E3_FILL_IN_CLOZE"
    E4_READING = "E4_READING"
    E5_DISCOURSE = "E5_DISCOURSE"
    E5_TRANSLATION = "E5_TRANSLATION"
    E6_WRITING = "E6_WRITING"


ConfidenceLevel = Literal["high", "medium", "low"]


# --- Subject arbitration ---
class HardGuardDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: GuardSubject
    reason: str
    matched_tokens: List[str] = Field(default_factory=list)


class ExpertProbe(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: ExpertSubject
    confidence: float = Field(..., ge=0.0, le=1.0)
    tags: List[str] = Field(default_factory=list)
    notes: str = ""


class Arbitration(BaseModel):
    """Guard + experts + the decision derived from them, with its reason trail."""

    model_config = ConfigDict(frozen=True)

    guard: HardGuardDecision
    experts: List[ExpertProbe]
    chosen: List[ExpertProbe]
    subject_hint: SubjectHint
    reason: str


# --- Option / blank extraction ---
class OptionStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    text: str
    tokens: int
    ends_with_punctuation: bool
    is_short: bool


class ParsedChoice(BaseModel):
    label: str
    text: str


class CharSpan(BaseModel):
    start: int
    end: int


class E6Blank(BaseModel):
    blank_index: int
    anchor_id: str
    char_span: CharSpan
    paragraph_index: int = 0
    normalized_marker: str


class E6Parsed(BaseModel):
    passage: str
    blanks: List[E6Blank] = Field(default_factory=list)
    normalized_passage: str = ""
    warnings: List[str] = Field(default_factory=list)


# --- Question set analysis ---
class QuestionBlockStat(BaseModel):
    index: int
    stem: str
    options: List[OptionStat] = Field(default_factory=list)
    has_blank_in_stem: bool = False


class QuestionSetAnalysis(BaseModel):
    normalized: str
    passage: str
    passage_blank_count: int
    global_blank_count: int
    question_blocks: List[QuestionBlockStat] = Field(default_factory=list)
    question_count: int
    global_options: List[OptionStat] = Field(default_factory=list)
    word_bank: List[OptionStat] = Field(default_factory=list)
    question_kind: QuestionSetKind = QuestionSetKind.UNKNOWN
    matched_rule: Optional[str] = None


# --- Conservative mode (tagged union keyed by `type`) ---
# "(B)", "B.", "（b）" -> "B"; anything that is not a lone option letter is only upper-cased.
_OPTION_LETTER_RE = re.compile(r"^[\s(（\[]*([A-Oa-o])\s*(?:[)）\].．、:：]|$)")


def option_letter(value: Any) -> str:
    s = str(value or "").strip()
    m = _OPTION_LETTER_RE.match(s)
    return m.group(1).upper() if m else s.upper()


class DistractorReject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    option: str
    reason: str

    @field_validator("option", mode="before")
    @classmethod
    def _letter_option(cls, v):
        return option_letter(v)


class ClozeSlot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    slot: int
    answer: str
    one_line_reason: str
    distractor_rejects: List[DistractorReject] = Field(default_factory=list)

    @field_validator("answer", mode="before")
    @classmethod
    def _letter_answer(cls, v):
        return option_letter(v)


class ReadingQuestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    qid: int
    answer: str
    one_line_reason: str
    evidence_sentence: Optional[str] = None
    distractor_rejects: List[DistractorReject] = Field(default_factory=list)


class E1VocabAnswer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["E1_VOCAB"] = "E1_VOCAB"
    question_text: str
    answer: str
    one_line_reason: str
    distractor_rejects: List[DistractorReject] = Field(default_factory=list)


class E2ClozeAnswer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["E2_CLOZE"] = "E2_CLOZE"
    passage_summary: str
    slots: List[ClozeSlot] = Field(default_factory=list)


class E3FillInClozeAnswer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["E3_FILL_IN_CLOZE"] = "E3_FILL_IN_CLOZE"
    passage_summary: str
    slots: List[ClozeSlot] = Field(default_factory=list)


class E4ReadingAnswer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["E4_READING"] = "E4_READING"
    title: str
    questions: List[ReadingQuestion] = Field(default_factory=list)


class E5DiscourseAnswer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["E5_DISCOURSE"] = "E5_DISCOURSE"
    passage_summary: str
    slots: List[ClozeSlot] = Field(default_factory=list)


class E5TranslationAnswer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["E5_TRANSLATION"] = "E5_TRANSLATION"
    original_zh: str
    reference_en: str
    grammar_focus: str
    key_phrase_analysis: str
    native_upgrade: Optional[str] = None


class MAWSScores(BaseModel):
    content: float = Field(..., ge=0, le=5)
    organization: float = Field(..., ge=0, le=5)
    grammar_structure: float = Field(..., ge=0, le=5)
    vocabulary_fluency: float = Field(..., ge=0, le=5)


class E6WritingAnswer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["E6_WRITING"] = "E6_WRITING"
    topic_summary: str
    student_sample: Optional[str] = None
    maws_scores: MAWSScores
    qualitative_feedback: str
    high_score_sample_intro: Optional[str] = None


ConservativeAnswer = Annotated[
    Union[
        E1VocabAnswer,
        E2ClozeAnswer,
        E3FillInClozeAnswer,
        E4ReadingAnswer,
        E5DiscourseAnswer,
        E5TranslationAnswer,
        E6WritingAnswer,
    ],
    Field(discriminator="type"),
]

ANSWER_MODELS: Dict[ConservativeQuestionType, type] = {
    ConservativeQuestionType.E1_VOCAB: E1VocabAnswer,
    ConservativeQuestionType.E2_CLOZE: E2ClozeAnswer,
    ConservativeQuestionType.E3_FILL_IN_CLOZE: E3FillInClozeAnswer,
    ConservativeQuestionType.E4_READING: E4ReadingAnswer,
    ConservativeQuestionType.E5_DISCOURSE: E5DiscourseAnswer,
    ConservativeQuestionType.E5_TRANSLATION: E5TranslationAnswer,
    ConservativeQuestionType.E6_WRITING: E6WritingAnswer,
}


class ConservativeResult(BaseModel):
    detected_type: ConservativeQuestionType
    answer: ConservativeAnswer
    confidence: ConfidenceLevel = "medium"


# --- General solver (route solver) ---
class GrammarRow(BaseModel):
    category: str
    description: str
    example: str


class ExplainResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    answer: str = Field(..., description="正確答案，例如「答案：A」")
    focus: str = Field(..., description="單一考點關鍵詞")
    summary: str = Field(..., description="一句話解析")
    steps: List[str] = Field(..., min_length=3, max_length=5)
    details: List[str] = Field(..., min_length=2, max_length=4)
    grammar_table: Optional[List[GrammarRow]] = Field(
        None, validation_alias=AliasChoices("grammar_table", "grammarTable")
    )
    encouragement: Optional[str] = None


class RetrievalQuery(BaseModel):
    base_query: str
    tags: List[str] = Field(default_factory=list)
    search_query: str


class HybridSolveMeta(BaseModel):
    question_id: str
    guard: HardGuardDecision
    experts: List[ExpertProbe]
    chosen: List[ExpertProbe]
    subject_hint: SubjectHint
    retrieval: RetrievalQuery
    config: Dict[str, Any] = Field(default_factory=dict)
    reason: str
    choices: List[ParsedChoice] = Field(default_factory=list)


class HybridSolveResponse(BaseModel):
    explanation: ExplainResult
    meta: HybridSolveMeta


# --- Normalized explanation card ---
OptionVerdict = Literal["fit", "unfit", "unknown"]
CardKind = Literal["E1", "E2", "E3", "E4", "E5", "FALLBACK"]


class CardOption(BaseModel):
    key: str = Field(..., min_length=1)
    text: str = ""
    pos: Optional[str] = None
    zh: Optional[str] = None
    reason: Optional[str] = None
    verdict: OptionVerdict = "unknown"


class CardStep(BaseModel):
    title: str = ""
    detail: Optional[str] = None


class CardCorrect(BaseModel):
    key: str = ""
    text: str = ""
    reason: Optional[str] = None


class CardVocab(BaseModel):
    term: str = ""
    pos: Optional[str] = None
    zh: Optional[str] = None
    note: Optional[str] = None
    context: Optional[str] = None


class NextAction(BaseModel):
    label: str = ""
    action: str = ""


class OptionView(BaseModel):
    key: str
    word: str
    pos: str
    zh: str
    reason: str
    correct: bool


class VocabView(BaseModel):
    word: str
    pos: str
    zh: str
    note: str


class NormalizedExplainView(BaseModel):
    stem_en: str = ""
    stem_zh: Optional[str] = None
    reasoning: List[str] = Field(default_factory=list)
    options: List[OptionView] = Field(default_factory=list)
    answer_key: str = "A"
    answer_word: str = ""
    vocab: List[VocabView] = Field(default_factory=list)


class NormalizedCard(BaseModel):
    id: str
    question: str = ""
    kind: CardKind = "FALLBACK"
    translation: Optional[str] = None
    cues: List[str] = Field(default_factory=list)
    options: List[CardOption] = Field(default_factory=list)
    steps: List[CardStep] = Field(default_factory=list)
    correct: Optional[CardCorrect] = None
    vocab: List[CardVocab] = Field(default_factory=list)
    next_actions: List[NextAction] = Field(default_factory=list)
    presentation: NormalizedExplainView = Field(default_factory=NormalizedExplainView)
