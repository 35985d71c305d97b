from __future__ import annotations

import time
from typing import List, Optional, Tuple

from constraints import ConstraintProfile
from domain import (
    Document, GenerationRequest, ListingResult, StageState, ValidationReport,
)
from language_model import GenerationBackend, GenerationError
from logger import log_event, log_exception, log_performance
from parser import VARIANT_RE, find_headings, parse_document, splice_section, strip_leading_heading
from pipeline import postprocess_text
from prompt_schema import (
    build_full_repair_input, build_input, build_instructions, build_section_repair, output_language,
)
from settings import Settings
from utils import normalize_ws
from validator import validate_document


def collapse_variants(value: Optional[int]) -> int:
    """Only 1 and 3 variants are supported; anything else means one."""
    return 3 if value == 3 else 1


class _RepairAbandoned(Exception):
    """A repair call failed at the backend; the caller keeps the last good document."""


class ListingPipeline:
    """Generate, post-process, validate, then repair within a fixed pass budget.

    One instance per request. Backend calls are strictly sequential and each
    stage calls the backend at most once per (section kind, variant block).
    """

    def __init__(self, settings: Settings, model: GenerationBackend, profile: ConstraintProfile):
        self.settings = settings
        self.model = model
        self.profile = profile
        self.variants = 1

    # ---- helpers ----
    def _request(self, instructions: str, user_input: str, budget: int, stage: str, web_search: bool = False) -> GenerationRequest:
        return GenerationRequest(
            instructions=instructions,
            input=user_input,
            token_budget=budget,
            temperature=self.settings.temperature,
            reasoning_effort=self.settings.reasoning_effort,
            timeout_s=self.settings.request_timeout_s,
            web_search=web_search,
            stage=stage,
        )

    def _settle(self, text: str, brand: str, stage: str) -> Tuple[Document, ValidationReport]:
        doc = parse_document(postprocess_text(text, self.profile, brand))
        report = self._validate(doc, brand)
        log_event("VALIDATION", f"stage={stage} blocks={len(doc.blocks)} violations={len(report.violations)}")
        return doc, report

    def _validate(self, doc: Document, brand: str) -> ValidationReport:
        return validate_document(doc, self.profile, brand, expected_variants=self.variants)

    @staticmethod
    def _merge_sources(sources: List[str], more: List[str]) -> None:
        for url in more:
            if url not in sources:
                sources.append(url)

    def _call(self, stage: StageState, request: GenerationRequest):
        try:
            return self.model.generate(request)
        except GenerationError as e:
            stage.status = "failed"
            stage.detail = f"{e.kind}: {e.message}"
            log_exception("REPAIR_ABANDONED", e)
            log_event("REPAIR_ABANDONED", f"stage={stage.name} kind={e.kind}")
            raise _RepairAbandoned() from e

    # ---- sanity check for targeted replacements ----
    def _accept_replacement(
        self,
        kind: str,
        block_index: int,
        replacement: str,
        before_doc: Document,
        before: ValidationReport,
        after_doc: Document,
        after: ValidationReport,
    ) -> Tuple[bool, str]:
        body = strip_leading_heading(kind, replacement)
        if not body.strip():
            return False, "empty replacement"
        if VARIANT_RE.search(body) or find_headings(body):
            return False, "replacement carries foreign section markers"
        if len(after_doc.blocks) != len(before_doc.blocks):
            return False, "replacement changed the block structure"

        old = before.for_block(block_index, kind)
        new = after.for_block(block_index, kind)
        was_missing = any(v.rule == "missing section" for v in old)
        still_missing = any(v.rule == "missing section" for v in new)
        if not (len(new) < len(old) or (was_missing and not still_missing)):
            return False, f"section still failing ({len(new)} violations)"

        others_before = len(before.violations) - len(old)
        others_after = len(after.violations) - len(new)
        if others_after > others_before:
            return False, "replacement broke other sections"
        return True, ""

    # ---- stages ----
    def _full_repair(
        self, ctx: dict, doc: Document, report: ValidationReport, stages: List[StageState], sources: List[str],
    ) -> Tuple[Document, ValidationReport]:
        stage = StageState(name="repair_full", violations_before=len(report.violations))
        stages.append(stage)
        t0 = time.perf_counter()
        try:
            request = self._request(
                ctx["instructions"],
                build_full_repair_input(ctx["input"], doc.text, report.violations),
                ctx["budget"],
                stage="repair_full",
            )
            result = self._call(stage, request)
        finally:
            stage.duration_ms = (time.perf_counter() - t0) * 1000.0
            log_performance("STAGE_REPAIR_FULL", stage.duration_ms, violations_before=stage.violations_before)

        new_doc, new_report = self._settle(result.text, ctx["brand"], "repair_full")
        self._merge_sources(sources, result.sources)
        stage.violations_after = len(new_report.violations)
        # A rewrite that loses variant blocks or adds violations is not an improvement
        if len(new_doc.blocks) < len(doc.blocks) or len(new_report.violations) > len(report.violations):
            stage.status = "discarded"
            stage.detail = "rewrite did not improve the document"
            stage.violations_after = len(report.violations)
            log_event("REPAIR_FULL", f"discarded before={len(report.violations)} after={len(new_report.violations)}")
            return doc, report
        stage.status = "accepted"
        log_event("REPAIR_FULL", f"accepted before={len(report.violations)} after={len(new_report.violations)}")
        return new_doc, new_report

    def _targeted_repair(
        self, ctx: dict, doc: Document, report: ValidationReport, stages: List[StageState],
    ) -> Tuple[Document, ValidationReport]:
        for kind in report.section_kinds():
            for block_index in report.blocks_failing(kind):
                # Offsets move after every splice; always work on the current parse
                block = doc.blocks[block_index]
                failing = report.for_block(block_index, kind)
                if not failing:
                    continue
                stage = StageState(
                    name=f"repair_{kind}" + (f"_{block.label}" if block.label else ""),
                    violations_before=len(failing),
                )
                stages.append(stage)
                t0 = time.perf_counter()
                try:
                    instructions, user_input = build_section_repair(
                        kind, self.profile, ctx["language"], ctx["brand"], ctx["input"],
                        block, block.sections[kind].body, failing,
                    )
                    result = self._call(
                        stage,
                        self._request(instructions, user_input, self.profile.token_budget_single, stage=stage.name),
                    )
                finally:
                    stage.duration_ms = (time.perf_counter() - t0) * 1000.0
                    log_performance("STAGE_REPAIR_TARGETED", stage.duration_ms, kind=kind, variant=block.label)

                spliced = splice_section(doc, block_index, kind, result.text)
                new_doc, new_report = self._settle(spliced, ctx["brand"], stage.name)
                ok, reason = self._accept_replacement(
                    kind, block_index, result.text, doc, report, new_doc, new_report,
                )
                if ok:
                    doc, report = new_doc, new_report
                    stage.status = "accepted"
                    stage.violations_after = len(report.for_block(block_index, kind))
                else:
                    stage.status = "discarded"
                    stage.detail = reason
                    stage.violations_after = len(failing)
                log_event(
                    "REPAIR_TARGETED",
                    f"kind={kind} variant={block.label or '-'} status={stage.status} {stage.detail}".rstrip(),
                )
        return doc, report

    # ---- entry point ----
    def run(
        self,
        brand_name: str,
        marketplace: str,
        product_info: str,
        usp: str = "",
        brand_voice: str = "",
        variants: int = 1,
    ) -> ListingResult:
        """Produce a listing document and whatever violations remain after repair.

        Errors from the initial backend call propagate; errors during repair
        end the repair loop and the best document so far is returned.
        """
        variants = collapse_variants(variants)
        self.variants = variants
        brand = normalize_ws(brand_name)
        language = output_language(marketplace)
        web_search = self.settings.enable_web_search
        ctx = {
            "brand": brand,
            "language": language,
            "instructions": build_instructions(self.profile, language, brand, web_search=web_search),
            "input": build_input(brand, marketplace, product_info, usp=usp, brand_voice=brand_voice, variants=variants),
            "budget": self.profile.token_budget(variants),
        }
        stages: List[StageState] = []
        sources: List[str] = []

        # Initial generation
        stage = StageState(name="generate")
        stages.append(stage)
        log_event("GENERATE_INITIAL", f"marketplace={marketplace} language={language} variants={variants} profile={self.profile.name}")
        t0 = time.perf_counter()
        result = self.model.generate(
            self._request(ctx["instructions"], ctx["input"], ctx["budget"], stage="initial", web_search=web_search)
        )
        stage.duration_ms = (time.perf_counter() - t0) * 1000.0
        log_performance("STAGE_GENERATE", stage.duration_ms, variants=variants)
        self._merge_sources(sources, result.sources)
        doc, report = self._settle(result.text, brand, "initial")
        stage.status = "ok"
        stage.violations_after = len(report.violations)

        try:
            if not report.valid and self.profile.full_repair:
                doc, report = self._full_repair(ctx, doc, report, stages, sources)
            for _ in range(self.profile.max_targeted_passes):
                if report.valid or not any(v.block_index is not None for v in report.violations):
                    break
                doc, report = self._targeted_repair(ctx, doc, report, stages)
        except _RepairAbandoned:
            # logged in _call; keep the last accepted document
            pass

        # Final pass over the best-effort text
        final_text = postprocess_text(doc.text, self.profile, brand)
        final_doc = parse_document(final_text)
        final_report = self._validate(final_doc, brand)
        log_event("VALIDATION", f"stage=final valid={final_report.valid} violations={len(final_report.violations)}")
        return ListingResult(
            text=final_text,
            report=final_report,
            stages=stages,
            sources=sources,
            profile=self.profile.name,
            language=language,
        )
