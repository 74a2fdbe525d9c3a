from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import List, Sequence, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.platypus import (
    SimpleDocTemplate,
    Paragraph,
    Spacer,
    Table,
    TableStyle,
    PageBreak,
    Flowable,
)

from debtfree_agent.calculator import FinanceProfile, LoanAccount, LoanKind, PrepaymentStrategy
from debtfree_agent.simulator import Outcome, SimulationResult, StrategyComparison, find_critical_point


# --- Setup Fonts and Colors ---

FONT_NAME = "STSong-Light"
NUM_FONT = "Helvetica"  # 数字/英文使用西文字体
pdfmetrics.registerFont(UnicodeCIDFont(FONT_NAME))

# 首页最多列出的提前还款事件数
MAX_EVENT_ROWS = 12

PALETTE = {
    "primary_text": "#1E293B",
    "secondary_text": "#64748B",
    "accent_green": "#10B981",
    "highlight_bg": "#F1F5F9",
    "border": "#E2E8F0",
    "warning": "#EF4444",
    "white": "#FFFFFF",
    "dark_header": "#0F172A",
}


# 临界点命中原因 -> 提示文案
_CRITICAL_REASON_CN = {
    "monthly_interest_below_principal": "每月利息低于归还本金",
    "remaining_interest_below_10_percent": "剩余总利息占剩余还款不足 10%",
}


def critical_point_tip(month: int, reason: str) -> str:
    """临界点提示文案，按命中原因选择说法。"""
    y, m = _months_to_years_months(month - 1)
    return (
        f"<b>临界点提示（按不提前还款方案）：</b>从第{month}个月（约第{y + 1}年第{m + 1}个月）起，"
        f"{_CRITICAL_REASON_CN[reason]}；此后提前还贷的边际收益会逐渐降低。"
    )


def _kind_cn(kind: LoanKind) -> str:
    return "公积金贷款" if kind is LoanKind.HOUSING_FUND else "商业贷款"


def _strategy_cn(strategy: PrepaymentStrategy) -> str:
    return "缩短年限" if strategy is PrepaymentStrategy.SHORTEN_TERM else "减少月供"


def _outcome_cn(result: SimulationResult) -> str:
    if result.outcome is Outcome.PAID_OFF:
        years, months = _months_to_years_months(result.months)
        return f"{result.months} 个月（约 {years} 年 {months} 个月）还清"
    if result.outcome is Outcome.MONTH_CAP_REACHED:
        return f"模拟 {result.months} 个月后仍未还清"
    return "月供不足以覆盖利息且存款不再增长，无法还清"


def _fmt_money_font(v: float) -> str:
    return f"<font name='{FONT_NAME}'>￥</font><font name='{NUM_FONT}'>{v:,.2f}</font>"


def _fmt_percent_font(v: float) -> str:
    return f"<font name='{NUM_FONT}'>{v:.2f}%</font>"


def _months_to_years_months(m: int) -> Tuple[int, int]:
    return m // 12, m % 12


class PageHeader(Flowable):
    """一条水平分割线。"""

    def __init__(self, width, height=0):
        super().__init__()
        self.width = width
        self.height = height

    def draw(self):
        self.canv.setStrokeColor(colors.HexColor(PALETTE["border"]))
        self.canv.setLineWidth(0.4)
        self.canv.line(0, self.height, self.width, self.height)


def _header_footer(canvas, doc):
    """每页页眉页脚。"""
    canvas.saveState()
    canvas.setFont(FONT_NAME, 9)
    canvas.setFillColor(colors.HexColor(PALETTE["secondary_text"]))
    canvas.setStrokeColor(colors.HexColor(PALETTE["border"]))
    canvas.setLineWidth(0.4)
    canvas.line(doc.leftMargin, doc.height + doc.topMargin - 9 * mm, doc.width + doc.leftMargin, doc.height + doc.topMargin - 9 * mm)
    canvas.drawString(doc.leftMargin, doc.height + doc.topMargin - 7 * mm, "无债一身轻 ▲ 家庭还贷模拟")

    canvas.setFont(FONT_NAME, 8)
    canvas.drawString(doc.leftMargin, 10 * mm, f"生成日期: {date.today().strftime('%Y-%m-%d')}")
    canvas.drawRightString(doc.width + doc.leftMargin, 10 * mm, f"第 {doc.page} 页")
    canvas.restoreState()


def _table_style(header_bg: str) -> TableStyle:
    return TableStyle(
        [
            ("FONT", (0, 0), (-1, -1), FONT_NAME, 9.6),
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(header_bg)),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor(PALETTE["white"])),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.HexColor("#FFFFFF"), colors.HexColor(PALETTE["highlight_bg"])]),
            ("LINEBELOW", (0, -1), (-1, -1), 0.8, colors.HexColor(PALETTE["border"])),
            ("PADDING", (0, 0), (-1, -1), 7),
        ]
    )


def generate_pdf(
    *,
    comparison: StrategyComparison,
    loans: Sequence[LoanAccount],
    profile: FinanceProfile,
) -> bytes:
    """根据 compare_strategies 的结果生成 PDF，返回 PDF 二进制内容。

    首页：家庭输入 + 三种方案对比；第 2 页：所选策略下的提前还款事件与临界点提示。
    """
    chosen = (
        comparison.shorten_term
        if profile.prepayment_strategy is PrepaymentStrategy.SHORTEN_TERM
        else comparison.reduce_payment
    )
    best_saved = max(comparison.savings_shorten, comparison.savings_reduce)

    styles = getSampleStyleSheet()
    base_style = ParagraphStyle(
        "base_cn",
        parent=styles["BodyText"],
        fontName=FONT_NAME,
        fontSize=10.2,
        leading=17,
        wordWrap="CJK",
        textColor=colors.HexColor(PALETTE["primary_text"]),
    )
    title_style = ParagraphStyle(
        "title_cn",
        parent=styles["Title"],
        fontName=FONT_NAME,
        fontSize=24,
        leading=32,
        textColor=colors.HexColor(PALETTE["primary_text"]),
        spaceAfter=10,
    )
    h2_style = ParagraphStyle(
        "h2_cn",
        parent=styles["Heading2"],
        fontName=FONT_NAME,
        fontSize=16,
        leading=22,
        textColor=colors.HexColor(PALETTE["primary_text"]),
        spaceBefore=8,
        spaceAfter=8,
    )
    big_green_style = ParagraphStyle(
        "big_green",
        parent=styles["Title"],
        fontName=NUM_FONT,
        fontSize=36,
        leading=44,
        textColor=colors.HexColor(PALETTE["accent_green"]),
        alignment=1,
    )

    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=32 * mm,
        bottomMargin=22 * mm,
        title="家庭还贷模拟报告",
        author="debtfree-agent",
    )

    story: List[Flowable] = []

    # -------------------- 第 1 页：输入 + 方案对比 --------------------
    story.append(Spacer(1, 3 * mm))
    story.append(Paragraph("<b>家庭还贷模拟</b>", title_style))
    story.append(PageHeader(doc.width))
    story.append(Spacer(1, 5 * mm))

    loan_data = [["序号", "贷款类型", "本金", "年利率", "年限"]]
    for idx, loan in enumerate(loans, start=1):
        loan_data.append([
            str(idx),
            _kind_cn(loan.kind),
            Paragraph(_fmt_money_font(float(loan.principal)), base_style),
            Paragraph(_fmt_percent_font(float(loan.annual_rate)), base_style),
            f"{loan.term_years} 年",
        ])
    loan_table = Table(loan_data, colWidths=[14 * mm, 34 * mm, 50 * mm, 36 * mm, 36 * mm])
    loan_table.setStyle(_table_style(PALETTE["dark_header"]))
    story.append(loan_table)
    story.append(Spacer(1, 4 * mm))

    monthly_surplus = profile.monthly_income - profile.monthly_expense
    story.append(
        Paragraph(
            f"月收入：{_fmt_money_font(profile.monthly_income)}　月支出：{_fmt_money_font(profile.monthly_expense)}"
            f"　收支差：{_fmt_money_font(monthly_surplus)}<br/>"
            f"初始存款：{_fmt_money_font(profile.initial_savings)}　提前还款阈值：{_fmt_money_font(profile.prepayment_threshold)}"
            f"　策略：{_strategy_cn(profile.prepayment_strategy)}",
            base_style,
        )
    )
    story.append(Spacer(1, 6 * mm))

    story.append(Paragraph("提前还款最多可为您节省利息", ParagraphStyle(name="saving_title_cn", parent=base_style, alignment=1)))
    story.append(Paragraph(_fmt_money_font(best_saved), big_green_style))
    story.append(Spacer(1, 4 * mm))

    summary_data = [["方案", "结果", "总利息", "节省利息"]]
    for label, result, saved in (
        ("不提前还款", comparison.baseline, 0.0),
        ("缩短年限", comparison.shorten_term, comparison.savings_shorten),
        ("减少月供", comparison.reduce_payment, comparison.savings_reduce),
    ):
        summary_data.append([
            label,
            Paragraph(_outcome_cn(result), base_style),
            Paragraph(_fmt_money_font(result.total_interest), base_style),
            Paragraph(_fmt_money_font(saved), base_style),
        ])
    summary_table = Table(summary_data, colWidths=[30 * mm, 66 * mm, 37 * mm, 37 * mm])
    summary_table.setStyle(_table_style(PALETTE["dark_header"]))
    story.append(summary_table)

    critical_month, critical_reason = find_critical_point(comparison.baseline.records)
    if critical_month:
        story.append(Spacer(1, 8))
        story.append(
            Paragraph(
                critical_point_tip(critical_month, critical_reason),
                ParagraphStyle(
                    name="critical_point_tip",
                    parent=base_style,
                    fontSize=9.6,
                    backColor=colors.HexColor(PALETTE["highlight_bg"]),
                    borderPadding=8,
                ),
            )
        )

    story.append(PageBreak())

    # -------------------- 第 2 页：提前还款事件 --------------------
    story.append(Paragraph(f"提前还款记录（{_strategy_cn(profile.prepayment_strategy)}）", h2_style))
    story.append(PageHeader(doc.width))
    story.append(Spacer(1, 3 * mm))

    events = [r for r in chosen.records if r.is_prepayment]
    if not events:
        story.append(Paragraph("模拟期间存款从未达到提前还款条件。", base_style))
    else:
        event_data = [["月份", "提前还款金额", "还款后剩余本金", "还款后月供", "剩余存款"]]
        for r in events[:MAX_EVENT_ROWS]:
            event_data.append([
                str(r.month),
                Paragraph(_fmt_money_font(r.prepayment_amount), base_style),
                Paragraph(_fmt_money_font(r.remaining_loan_balance), base_style),
                Paragraph(_fmt_money_font(r.current_monthly_installment), base_style),
                Paragraph(_fmt_money_font(r.total_savings), base_style),
            ])
        event_table = Table(event_data, colWidths=[18 * mm, 38 * mm, 40 * mm, 36 * mm, 38 * mm])
        event_table.setStyle(_table_style(PALETTE["dark_header"]))
        story.append(event_table)
        if len(events) > MAX_EVENT_ROWS:
            story.append(Spacer(1, 4))
            story.append(Paragraph(f"共 {len(events)} 次提前还款，完整明细见导出的 Excel 文件。", base_style))

    if not chosen.paid_off:
        story.append(Spacer(1, 6 * mm))
        story.append(
            Paragraph(
                f"<font color='{PALETTE['warning']}'><b>注意：</b>{_outcome_cn(chosen)}。</font>",
                base_style,
            )
        )

    story.append(Spacer(1, 12 * mm))
    story.append(PageHeader(doc.width))
    story.append(Spacer(1, 4 * mm))
    story.append(
        Paragraph(
            "<b>免责声明：</b>本报告基于您提供的数据进行数学模拟，结果仅供参考。实际还款规则可能受银行计息方式、提前还款手续费、"
            "利率调整等多种因素影响，请以银行出具的官方还款计划表为准。",
            ParagraphStyle(
                "disclaimer",
                parent=base_style,
                fontSize=8.5,
                leading=14,
                textColor=colors.HexColor(PALETTE["secondary_text"]),
            ),
        )
    )

    doc.build(story, onFirstPage=_header_footer, onLaterPages=_header_footer)
    return buf.getvalue()
