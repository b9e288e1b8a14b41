from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import Optional, Sequence, Tuple

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

from mortgage_strategy.calculator import LOAN_PROVIDENT, METHOD_EQUAL_PRINCIPAL, Loan, monthly_payment
from mortgage_strategy.opportunity import VERDICT_REPAY, analyze_opportunity, invest_future_value
from mortgage_strategy.simulator import StrategyComparison


FONT_NAME = "STSong-Light"
FONT_NAME_BOLD = "STSong-Light"  # CID 字体使用 <b> 标签加粗
NUM_FONT = "Helvetica"
pdfmetrics.registerFont(UnicodeCIDFont(FONT_NAME))

PALETTE = {
    "primary_text": "#1E293B",
    "secondary_text": "#64748B",
    "accent_green": "#10B981",
    "accent_blue": "#3B82F6",
    "accent_red": "#EF4444",
    "highlight_bg": "#F1F5F9",
    "border": "#E2E8F0",
    "white": "#FFFFFF",
    "dark_header": "#0F172A",
}

# 理财对比的年限
INVEST_COMPARE_YEARS = 20


def _method_cn(method: str) -> str:
    return "等额本金" if method == METHOD_EQUAL_PRINCIPAL else "等额本息"


def _loan_type_cn(loan_type: str) -> str:
    return "公积金" if loan_type == LOAN_PROVIDENT else "商贷"


def _fmt_money_font(v: float) -> str:
    return f"<font name='{FONT_NAME}'>￥</font><font name='{NUM_FONT}'>{v:,.2f}</font>"


def _fmt_percent_font(v: float) -> str:
    return f"<font name='{NUM_FONT}'>{v:.2f}%</font>"


def _months_to_years_months(m: int) -> Tuple[int, int]:
    return m // 12, m % 12


def _score_label(saved: float, repay_amount: float) -> str:
    # 按“每元提前还款节省的利息”评级
    if repay_amount <= 0:
        return "谨慎执行（资金利用率低）"
    ratio = saved / repay_amount
    if ratio >= 0.5:
        return "建议执行（省钱效率极高）"
    if ratio >= 0.2:
        return "建议执行（省钱效率较高）"
    if ratio >= 0.1:
        return "可考虑（收益一般）"
    return "谨慎执行（资金利用率低）"


class Divider(Flowable):
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
    canvas.saveState()
    canvas.setFont(FONT_NAME, 9)
    canvas.setFillColor(colors.HexColor(PALETTE["secondary_text"]))
    canvas.setStrokeColor(colors.HexColor(PALETTE["border"]))
    canvas.setLineWidth(0.4)
    top = doc.height + doc.topMargin
    canvas.line(doc.leftMargin, top - 9 * mm, doc.width + doc.leftMargin, top - 9 * mm)
    canvas.drawString(doc.leftMargin, top - 7 * mm, "提前还款策略对比")

    canvas.setFont(FONT_NAME, 8)
    canvas.drawString(doc.leftMargin, 10 * mm, f"生成日期: {date.today().strftime('%Y-%m-%d')}")
    canvas.drawRightString(doc.width + doc.leftMargin, 10 * mm, f"第 {doc.page} 页")
    canvas.restoreState()


def _table_style(header_bg: str) -> TableStyle:
    return TableStyle(
        [
            ("FONT", (0, 0), (-1, -1), FONT_NAME, 9.7),
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(header_bg)),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor(PALETTE["white"])),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.HexColor("#FFFFFF"), colors.HexColor(PALETTE["highlight_bg"])]),
            ("LINEBELOW", (0, -1), (-1, -1), 0.8, colors.HexColor(PALETTE["border"])),
            ("PADDING", (0, 0), (-1, -1), 8),
        ]
    )


def generate_pdf(
    *,
    loans: Sequence[Loan],
    comparison: StrategyComparison,
    investment_yield: Optional[float] = None,
) -> bytes:
    """根据 compare_strategies 的结果生成 PDF 策略报告，返回 PDF 字节。"""

    buf = BytesIO()
    repay_amount = float(comparison.repay_amount)
    baseline = comparison.baseline
    shorten = comparison.shorten_term
    reduce = comparison.reduce_payment

    best_saved = max(shorten.total_saved, reduce.total_saved)
    best_label = _score_label(best_saved, repay_amount)

    styles = getSampleStyleSheet()
    base_style = ParagraphStyle(
        "base_cn",
        parent=styles["BodyText"],
        fontName=FONT_NAME,
        fontSize=10.2,
        leading=19,
        wordWrap="CJK",
        textColor=colors.HexColor(PALETTE["primary_text"]),
    )
    meta_style = ParagraphStyle(
        "meta_cn",
        parent=base_style,
        fontSize=9.5,
        leading=14.5,
        textColor=colors.HexColor(PALETTE["secondary_text"]),
    )
    title_style = ParagraphStyle(
        "title_cn",
        parent=styles["Title"],
        fontName=FONT_NAME_BOLD,
        fontSize=25,
        leading=33,
        textColor=colors.HexColor(PALETTE["primary_text"]),
        spaceAfter=10,
    )
    h2_style = ParagraphStyle(
        "h2_cn",
        parent=styles["Heading2"],
        fontName=FONT_NAME_BOLD,
        fontSize=16.5,
        leading=23,
        textColor=colors.HexColor(PALETTE["primary_text"]),
        spaceBefore=8,
        spaceAfter=8,
    )
    big_green_style = ParagraphStyle(
        "big_green",
        parent=styles["Title"],
        fontName=NUM_FONT,
        fontSize=40,
        leading=48,
        textColor=colors.HexColor(PALETTE["accent_green"]),
        alignment=1,
        spaceBefore=6,
        spaceAfter=6,
    )
    tag_style = ParagraphStyle(
        "tag",
        parent=base_style,
        fontSize=12,
        leading=16,
        textColor=colors.HexColor(PALETTE["accent_green"]),
        backColor=colors.HexColor("#ECFDF3"),
        borderPadding=7,
        alignment=1,
        spaceAfter=8,
    )
    money_style = ParagraphStyle("money", parent=base_style, fontName=NUM_FONT, alignment=2)

    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=32 * mm,
        bottomMargin=22 * mm,
        title="提前还款策略对比报告",
    )

    story = []

    # -------------------- 第 1 页：贷款组合 + 核心摘要 --------------------
    story.append(Spacer(1, 3 * mm))
    story.append(Paragraph("<b>提前还款策略对比</b>", title_style))
    story.append(Paragraph(f"生成日期：{date.today().strftime('%Y-%m-%d')}", meta_style))
    story.append(Divider(doc.width))
    story.append(Spacer(1, 6 * mm))

    loan_rows = [["贷款", "类型", "剩余本金", "年利率", "剩余期数", "还款方式", "当前月供"]]
    for loan in loans:
        loan_rows.append(
            [
                loan.id,
                _loan_type_cn(loan.loan_type),
                Paragraph(_fmt_money_font(loan.balance), money_style),
                Paragraph(_fmt_percent_font(loan.annual_rate), money_style),
                str(loan.remaining_months),
                _method_cn(loan.method),
                Paragraph(_fmt_money_font(monthly_payment(loan)), money_style),
            ]
        )
    loan_table = Table(loan_rows, colWidths=[22 * mm, 16 * mm, 30 * mm, 20 * mm, 18 * mm, 22 * mm, 28 * mm])
    loan_table.setStyle(_table_style(PALETTE["dark_header"]))
    story.append(loan_table)
    story.append(Spacer(1, 8 * mm))

    story.append(
        Paragraph(
            f"本次提前还款 {_fmt_money_font(repay_amount)}，预计最多为您节省",
            ParagraphStyle(name="saving_title_cn", parent=base_style, alignment=1, fontSize=11),
        )
    )
    story.append(Paragraph(_fmt_money_font(best_saved), big_green_style))
    story.append(Paragraph(best_label, tag_style))
    story.append(Spacer(1, 5 * mm))

    shortened = sum(
        max(0, before.remaining_months - after.remaining_months)
        for before, after in zip(loans, shorten.adjusted_loans)
    )
    short_years, short_months = _months_to_years_months(shortened)

    summary_rows = [
        ["方案", "关键变化", "剩余总利息", "节省利息"],
        [
            "不提前还款",
            Paragraph(f"月供合计约 {_fmt_money_font(baseline.monthly_payment)}", base_style),
            Paragraph(_fmt_money_font(baseline.total_interest), money_style),
            Paragraph(_fmt_money_font(0.0), money_style),
        ],
        [
            "缩短年限",
            Paragraph(
                f"月供合计约 {_fmt_money_font(shorten.monthly_payment)}，"
                f"各笔贷款合计缩短 {short_years} 年 {short_months} 个月",
                base_style,
            ),
            Paragraph(_fmt_money_font(shorten.total_interest), money_style),
            Paragraph(_fmt_money_font(shorten.total_saved), money_style),
        ],
        [
            "减少月供",
            Paragraph(
                f"期限不变，月供合计从约 {_fmt_money_font(baseline.monthly_payment)} "
                f"降至约 {_fmt_money_font(reduce.monthly_payment)}",
                base_style,
            ),
            Paragraph(_fmt_money_font(reduce.total_interest), money_style),
            Paragraph(_fmt_money_font(reduce.total_saved), money_style),
        ],
    ]
    summary_table = Table(summary_rows, colWidths=[26 * mm, 76 * mm, 34 * mm, 34 * mm])
    summary_table.setStyle(_table_style(PALETTE["dark_header"]))
    story.append(summary_table)

    allocated = [(loan_id, amount) for loan_id, amount in shorten.allocation.items() if amount > 0]
    if allocated:
        text = "；".join(f"{loan_id} 分配 {_fmt_money_font(amount)}" for loan_id, amount in allocated)
        story.append(Spacer(1, 8))
        story.append(
            Paragraph(
                f"<b>分配方式（利率优先）：</b>{text}。",
                ParagraphStyle(
                    name="allocation_tip",
                    parent=base_style,
                    fontSize=9.6,
                    leading=13.5,
                    backColor=colors.HexColor(PALETTE["highlight_bg"]),
                    borderPadding=8,
                ),
            )
        )

    story.append(PageBreak())

    # -------------------- 第 2 页：还贷 vs 理财 --------------------
    story.append(Paragraph("还贷 vs 理财", h2_style))
    story.append(Divider(doc.width))

    if investment_yield is None:
        story.append(
            Paragraph(
                "您未提供理财年化收益率。通用建议：贷款加权利率高于稳健理财收益时优先还贷，"
                "否则可考虑保留流动性或将资金用于收益更高的用途。",
                base_style,
            )
        )
    else:
        analysis = analyze_opportunity(loans, investment_yield)
        fv = invest_future_value(repay_amount, float(investment_yield), INVEST_COMPARE_YEARS)
        invest_gain = fv - repay_amount
        diff = best_saved - invest_gain

        story.append(
            Paragraph(
                f"<b>利率对比：</b>贷款加权利率 {_fmt_percent_font(analysis.weighted_rate)}，"
                f"理财年化 {_fmt_percent_font(analysis.investment_yield)}，"
                f"利差 {_fmt_percent_font(analysis.rate_diff)}。",
                base_style,
            )
        )
        story.append(Spacer(1, 6))
        story.append(
            Paragraph(
                f"<b>理财收益模拟：</b>若不提前还款，将 {_fmt_money_font(repay_amount)} 投入理财，"
                f"{INVEST_COMPARE_YEARS} 年后预计收益约 <b>{_fmt_money_font(invest_gain)}</b>；"
                f"提前还款在最佳方案下节省利息约 <b>{_fmt_money_font(best_saved)}</b>。",
                base_style,
            )
        )
        story.append(Spacer(1, 10))

        if analysis.verdict == VERDICT_REPAY:
            verdict = f"<font color='{PALETTE['accent_red']}'>贷款成本高于理财收益，建议优先还贷</font>"
        else:
            verdict = f"<font color='{PALETTE['accent_blue']}'>理财收益不低于贷款成本，可考虑保留资金</font>"
        if diff >= 0:
            compare = f"还贷比理财多赚约 {_fmt_money_font(diff)}"
        else:
            compare = f"理财比还贷多赚约 {_fmt_money_font(-diff)}"
        story.append(Paragraph(f"<b>结论：{verdict}</b>。{compare}。", base_style))

    story.append(Spacer(1, 12 * mm))
    story.append(Divider(doc.width))
    story.append(Spacer(1, 4 * mm))
    story.append(
        Paragraph(
            "<b>免责声明：</b>本报告基于您提供的数据按整月复利进行数学模拟，结果仅供参考。"
            "实际还款规则可能受银行计息方式、扣款日、提前还款手续费等因素影响，请以银行出具的还款计划为准。",
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
