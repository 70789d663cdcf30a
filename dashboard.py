import argparse
import threading
import time
import webbrowser

from flask import Flask, jsonify, render_template_string, request
from flask_cors import CORS

from dexopt_scan import AppType, CommandError, is_aapt_available, scan

app = Flask(__name__)
CORS(app)

# Device routing, set from the command line
app.config.setdefault('DEXSCOPE_SERIAL', None)
app.config.setdefault('DEXSCOPE_ADB', False)


def collect_report(app_type, needle=None, with_labels=False):
    report = scan(app_type, needle=needle, with_labels=with_labels,
                  serial=app.config['DEXSCOPE_SERIAL'], use_adb=app.config['DEXSCOPE_ADB'])
    data = report.to_dict()
    data['app_type'] = app_type.value
    data['aapt_available'] = is_aapt_available() if with_labels else None
    data['last_updated'] = time.strftime('%Y-%m-%d %H:%M:%S')
    return data


# --- API Endpoints ---
@app.route('/')
def dashboard():
    return render_template_string('''
    <!DOCTYPE html>
    <html>
    <head>
        <title>Dexopt Dashboard</title>
        <meta name="viewport" content="width=device-width, initial-scale=1">
        <style>
            body { background: #181c24; color: #f4f4f4; font-family: 'Inter', Arial, sans-serif; margin: 0; }
            h1 { text-align: center; margin: 2rem 0 1rem 0; }
            .actions { display: flex; justify-content: center; gap: 1rem; margin-bottom: 1rem; }
            select, input, button {
                background: #23283a; color: #8ecfff; border: 2px solid #8ecfff;
                border-radius: 8px; padding: 0.5em 1em; font-family: inherit;
            }
            .card { background: #23283a; border-radius: 18px; padding: 1.5rem; margin: 1rem auto; max-width: 1000px; }
            .timestamp { text-align: center; color: #aaa; }
            table { width: 100%; border-collapse: collapse; }
            td { padding: 0.3em 0.5em; vertical-align: top; border-bottom: 1px solid #2f3548; font-family: monospace; }
            .s-speed-profile, .s-speed { color: #4caf50; }
            .s-verify { color: #ffc107; }
            .s-quicken { color: #42a5f5; }
            .s-run-from-apk, .s-error { color: #ff5252; }
            .s-everything { color: #e040fb; }
            .missing { color: #ff5252; font-style: italic; }
        </style>
    </head>
    <body>
        <h1>Dexopt Dashboard</h1>
        <div class="actions">
            <select id="type">
                <option value="user">User</option>
                <option value="system">System</option>
                <option value="all">All</option>
            </select>
            <input id="filter" placeholder="filter">
            <label><input type="checkbox" id="labels"> labels</label>
            <button onclick="fetchReport()">Refresh</button>
        </div>
        <div class="timestamp" id="lastUpdated">Last updated: --</div>
        <div class="card"><h2>Summary</h2><ul id="stats"></ul></div>
        <div class="card"><table id="rows"></table></div>
        <script>
        const KNOWN_STATUSES = ['speed-profile', 'speed', 'verify', 'quicken', 'run-from-apk', 'error', 'everything'];
        function escapeHtml(value) {
            return String(value)
                .replace(/&/g, '&amp;')
                .replace(/</g, '&lt;')
                .replace(/>/g, '&gt;')
                .replace(/"/g, '&quot;')
                .replace(/'/g, '&#39;');
        }
        function statusClass(status) {
            return KNOWN_STATUSES.includes(status) ? 's-' + status : 's-other';
        }
        function fetchReport() {
            let params = new URLSearchParams({
                type: document.getElementById('type').value,
                filter: document.getElementById('filter').value,
                labels: document.getElementById('labels').checked ? '1' : '0',
            });
            fetch('/api/report?' + params).then(r => r.json()).then(data => {
                if (data.status === 'error') { alert(data.message); return; }
                document.getElementById('lastUpdated').textContent = 'Last updated: ' + data.last_updated;
                let stats = Object.entries(data.stats).map(([k, v]) =>
                    `<li class="${statusClass(k)}">${escapeHtml(k)}: <b>${escapeHtml(v)}</b></li>`).join('');
                document.getElementById('stats').innerHTML =
                    `<li>Total Apps Checked: <b>${escapeHtml(data.total_displayed)}</b></li>` + (stats || '<li>No profile data found.</li>');
                document.getElementById('rows').innerHTML = data.rows.map(row => {
                    let name = row.label ? `${escapeHtml(row.label)} (${escapeHtml(row.name)})` : escapeHtml(row.name);
                    let entries = row.entries
                        ? row.entries.map(e => `<div class="${statusClass(e.status)}">${escapeHtml(e.raw_line)}</div>`).join('')
                        : '<div class="missing">(no info found)</div>';
                    return `<tr><td>${name}</td><td>${entries}</td></tr>`;
                }).join('');
            });
        }
        fetchReport();
        </script>
    </body>
    </html>
    ''')


@app.route('/api/report')
def api_report():
    try:
        app_type = AppType(request.args.get('type', AppType.USER.value))
    except ValueError:
        return jsonify({'status': 'error', 'message': f"Unknown app type: {request.args.get('type')}"}), 400
    needle = request.args.get('filter') or None
    with_labels = request.args.get('labels', '0') in ('1', 'true', 'yes')
    try:
        return jsonify(collect_report(app_type, needle, with_labels))
    except CommandError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 502


def _open_browser(port):
    time.sleep(1)
    url = f'http://localhost:{port}'
    print(f"[INFO] Attempting to open browser at {url}")
    try:
        webbrowser.open(url)
    except webbrowser.Error as e:
        print(f"[WARN] Could not open browser automatically: {e}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Dexopt status web dashboard")
    parser.add_argument('--host', default='127.0.0.1', help='Interface to bind')
    parser.add_argument('--port', type=int, default=5000, help='Port to listen on (falls back to 5050)')
    parser.add_argument('-s', '--serial', type=str, help='Run through adb against this device serial')
    parser.add_argument('--adb', action='store_true', help='Run device commands through adb shell')
    parser.add_argument('--no-browser', action='store_true', help='Do not open a browser window')
    args = parser.parse_args(argv)

    app.config['DEXSCOPE_SERIAL'] = args.serial
    app.config['DEXSCOPE_ADB'] = args.adb

    print("[INFO] Starting Dexopt Dashboard...")
    port = args.port
    try:
        if not args.no_browser:
            threading.Thread(target=_open_browser, args=(port,), daemon=True).start()
        app.run(host=args.host, port=port)
    except OSError as e:
        print(f"[WARN] Port {port} in use or unavailable: {e}")
        port = 5050
        print(f"[INFO] Trying fallback port {port}...")
        if not args.no_browser:
            threading.Thread(target=_open_browser, args=(port,), daemon=True).start()
        app.run(host=args.host, port=port)


if __name__ == '__main__':
    main()
