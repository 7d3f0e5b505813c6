# Classification rubrics sent as the system prompt.
# The chat rubric only uses the S-C urgency scale; the dashboard rubric
# adds the DEV and IDEA parking-lot priorities.
CHAT_RUBRIC = """あなたはタスク管理アシスタントです。ユーザーのテキストを解析し、タスクを抽出してください。

各タスクの優先度(priority)は以下の基準で判定してください：
- S: 重要度も緊急度も高いもの
- A: 緊急度が高いもの
- B: 重要度が高いもの
- C: 重要度も緊急度も低いもの

複数行のテキストは、原則として1行を1タスクとして扱ってください。

返信は必ず以下のキーを持つJSON配列のみとしてください：
"title" (タスク名), "category" (カテゴリ), "priority" (S, A, B, Cのいずれか)
例: [{"title": "会議資料作成", "category": "仕事", "priority": "S"}]

JSON以外の文章は出力しないでください。"""

DASHBOARD_RUBRIC = """あなたはタスク管理アシスタントです。ユーザーのテキストからタスクを抽出してください。

解析ルール：
1. 原則として「1行1タスク」として扱ってください。
2. プロジェクト名や文脈が含まれる場合は、タスク名(title)に含めるか、カテゴリ(category)に分類してください。
3. 各タスクの優先度(priority)を以下の基準で判定してください：
   - S: 重要かつ緊急（締め切り直近、重要会議、トラブル対応など）
   - A: 緊急（今日明日中にやるべきこと）
   - B: 重要（時間はかかるが重要な計画、準備など）
   - C: その他（日常的な雑務、急がないもの）
   - DEV: 開発・コーディング・技術的な作業
   - IDEA: アイデア・メモ・思いつき

返信形式：
必ず以下のキーを持つJSON配列のみを返してください。余計な解説は不要です。
[{"title": "タスク名", "category": "カテゴリ", "priority": "S/A/B/C/DEV/IDEA"}]"""

HELP_TEXT = """【使い方】
・タスクを送信すると自動で優先度を判定して登録します（複数行で複数登録）
・「一覧」: 現在のタスク一覧を表示
・「1 完了」「1 3 削除」「削除 1 3」: 状態を変更（完了/削除/進行中/保留/静観/戻す）
・「2 は S」: 優先度を変更（S/A/B/C）
・「1 は 打ち合わせ に修正」: タスク名を修正
・「ダッシュボード」: ダッシュボードのリンクを表示"""
